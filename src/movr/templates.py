"""Package templates for `movr init`.

Each template is a pair of Move sources (module + tests). Placeholders use
``string.Template`` syntax (``$name``) since Move code is full of braces.
"""
from string import Template

TEMPLATE_NAMES = ("basic", "token", "defi")


def get_template(kind: str) -> dict[str, str]:
    """Return {relative path: Template source} for a template kind."""
    if kind not in TEMPLATES:
        raise KeyError(kind)
    return TEMPLATES[kind]


def render(source: str, **values: str) -> str:
    return Template(source).substitute(**values)


FRAMEWORK_GIT = "https://github.com/aptos-labs/aptos-core.git"

FRAMEWORK_DEPENDENCIES = {
    "AptosFramework": "aptos-move/framework/aptos-framework/",
    "AptosStdlib": "aptos-move/framework/aptos-stdlib/",
    "MoveStdlib": "aptos-move/framework/move-stdlib/",
}

# Extra dependencies per template, on top of FRAMEWORK_DEPENDENCIES
TEMPLATE_DEPENDENCIES = {
    "basic": {},
    "token": {"AptosTokenObjects": "aptos-move/framework/aptos-token-objects/"},
    "defi": {},
}


BASIC_MODULE = """\
module $name::$name {
    use std::signer;
    use std::string::String;

    const E_NOT_INITIALIZED: u64 = 1;
    const E_ALREADY_INITIALIZED: u64 = 2;

    struct ModuleData has key {
        value: u64,
        message: String,
    }

    public entry fun initialize(account: &signer, initial_value: u64, message: String) {
        let addr = signer::address_of(account);
        assert!(!exists<ModuleData>(addr), E_ALREADY_INITIALIZED);
        move_to(account, ModuleData { value: initial_value, message });
    }

    public entry fun update_value(account: &signer, new_value: u64) acquires ModuleData {
        let addr = signer::address_of(account);
        assert!(exists<ModuleData>(addr), E_NOT_INITIALIZED);
        borrow_global_mut<ModuleData>(addr).value = new_value;
    }

    #[view]
    public fun get_value(addr: address): u64 acquires ModuleData {
        assert!(exists<ModuleData>(addr), E_NOT_INITIALIZED);
        borrow_global<ModuleData>(addr).value
    }

    #[view]
    public fun get_message(addr: address): String acquires ModuleData {
        assert!(exists<ModuleData>(addr), E_NOT_INITIALIZED);
        borrow_global<ModuleData>(addr).message
    }
}
"""

BASIC_TESTS = """\
#[test_only]
module $name::${name}_tests {
    use std::signer;
    use std::string;
    use $name::$name;

    #[test(account = @$name)]
    public fun test_initialize(account: &signer) {
        let addr = signer::address_of(account);
        $name::initialize(account, 42, string::utf8(b"hello"));
        assert!($name::get_value(addr) == 42, 0);
        assert!($name::get_message(addr) == string::utf8(b"hello"), 1);
    }

    #[test(account = @$name)]
    public fun test_update_value(account: &signer) {
        let addr = signer::address_of(account);
        $name::initialize(account, 42, string::utf8(b"hello"));
        $name::update_value(account, 100);
        assert!($name::get_value(addr) == 100, 0);
    }
}
"""

TOKEN_MODULE = """\
module $name::token {
    use std::error;
    use std::signer;
    use std::string::String;
    use aptos_framework::coin::{Self, BurnCapability, FreezeCapability, MintCapability};

    const E_NOT_INITIALIZED: u64 = 1;
    const E_ALREADY_INITIALIZED: u64 = 2;

    struct ${struct_name}Coin {}

    struct Capabilities has key {
        mint_cap: MintCapability<${struct_name}Coin>,
        burn_cap: BurnCapability<${struct_name}Coin>,
        freeze_cap: FreezeCapability<${struct_name}Coin>,
    }

    public entry fun initialize(
        account: &signer,
        name: String,
        symbol: String,
        decimals: u8,
    ) {
        let addr = signer::address_of(account);
        assert!(!exists<Capabilities>(addr), error::already_exists(E_ALREADY_INITIALIZED));
        let (burn_cap, freeze_cap, mint_cap) =
            coin::initialize<${struct_name}Coin>(account, name, symbol, decimals, true);
        move_to(account, Capabilities { mint_cap, burn_cap, freeze_cap });
    }

    public entry fun mint(account: &signer, amount: u64, recipient: address) acquires Capabilities {
        let addr = signer::address_of(account);
        assert!(exists<Capabilities>(addr), error::not_found(E_NOT_INITIALIZED));
        let caps = borrow_global<Capabilities>(addr);
        coin::deposit(recipient, coin::mint(amount, &caps.mint_cap));
    }

    public entry fun burn(account: &signer, amount: u64) acquires Capabilities {
        let addr = signer::address_of(account);
        assert!(exists<Capabilities>(addr), error::not_found(E_NOT_INITIALIZED));
        let caps = borrow_global<Capabilities>(addr);
        coin::burn(coin::withdraw<${struct_name}Coin>(account, amount), &caps.burn_cap);
    }

    #[view]
    public fun supply(): u128 {
        let supply = coin::supply<${struct_name}Coin>();
        if (std::option::is_some(&supply)) { *std::option::borrow(&supply) } else { 0 }
    }
}
"""

TOKEN_TESTS = """\
#[test_only]
module $name::token_tests {
    use std::signer;
    use std::string;
    use aptos_framework::account;
    use aptos_framework::coin;
    use $name::token;

    #[test(creator = @$name)]
    public fun test_mint_and_burn(creator: &signer) {
        account::create_account_for_test(signer::address_of(creator));
        token::initialize(creator, string::utf8(b"Test Token"), string::utf8(b"TEST"), 8);
        coin::register<token::${struct_name}Coin>(creator);
        token::mint(creator, 1000, signer::address_of(creator));
        assert!(token::supply() == 1000, 0);
        token::burn(creator, 1000);
        assert!(token::supply() == 0, 1);
    }
}
"""

DEFI_MODULE = """\
module $name::defi {
    use std::error;
    use std::signer;
    use aptos_framework::coin::{Self, Coin};

    const E_NOT_INITIALIZED: u64 = 1;
    const E_ALREADY_INITIALIZED: u64 = 2;
    const E_ZERO_AMOUNT: u64 = 3;
    const E_INSUFFICIENT_OUTPUT: u64 = 4;
    const E_INVALID_FEE: u64 = 5;

    /// Constant-product pool; fee in basis points
    struct Pool<phantom A, phantom B> has key {
        coin_a: Coin<A>,
        coin_b: Coin<B>,
        fee_bps: u64,
    }

    public entry fun create_pool<A, B>(
        account: &signer,
        amount_a: u64,
        amount_b: u64,
        fee_bps: u64,
    ) {
        let addr = signer::address_of(account);
        assert!(!exists<Pool<A, B>>(addr), error::already_exists(E_ALREADY_INITIALIZED));
        assert!(amount_a > 0 && amount_b > 0, error::invalid_argument(E_ZERO_AMOUNT));
        assert!(fee_bps <= 1000, error::invalid_argument(E_INVALID_FEE));
        move_to(account, Pool<A, B> {
            coin_a: coin::withdraw<A>(account, amount_a),
            coin_b: coin::withdraw<B>(account, amount_b),
            fee_bps,
        });
    }

    public entry fun swap_a_for_b<A, B>(
        account: &signer,
        pool_addr: address,
        amount_in: u64,
        min_out: u64,
    ) acquires Pool {
        assert!(exists<Pool<A, B>>(pool_addr), error::not_found(E_NOT_INITIALIZED));
        assert!(amount_in > 0, error::invalid_argument(E_ZERO_AMOUNT));
        let pool = borrow_global_mut<Pool<A, B>>(pool_addr);
        let out = quote(
            amount_in,
            coin::value(&pool.coin_a),
            coin::value(&pool.coin_b),
            pool.fee_bps,
        );
        assert!(out >= min_out, error::invalid_argument(E_INSUFFICIENT_OUTPUT));
        coin::merge(&mut pool.coin_a, coin::withdraw<A>(account, amount_in));
        coin::deposit(signer::address_of(account), coin::extract(&mut pool.coin_b, out));
    }

    #[view]
    public fun reserves<A, B>(pool_addr: address): (u64, u64) acquires Pool {
        assert!(exists<Pool<A, B>>(pool_addr), error::not_found(E_NOT_INITIALIZED));
        let pool = borrow_global<Pool<A, B>>(pool_addr);
        (coin::value(&pool.coin_a), coin::value(&pool.coin_b))
    }

    public fun quote(amount_in: u64, reserve_in: u64, reserve_out: u64, fee_bps: u64): u64 {
        let in_with_fee = (amount_in as u128) * ((10000 - fee_bps) as u128);
        let numerator = in_with_fee * (reserve_out as u128);
        let denominator = (reserve_in as u128) * 10000 + in_with_fee;
        ((numerator / denominator) as u64)
    }
}
"""

DEFI_TESTS = """\
#[test_only]
module $name::defi_tests {
    use $name::defi;

    #[test]
    public fun test_quote_without_fee() {
        assert!(defi::quote(100, 1000, 1000, 0) == 90, 0);
    }

    #[test]
    public fun test_quote_with_fee() {
        assert!(defi::quote(100, 1000, 1000, 30) < 90, 0);
    }
}
"""

README = """\
# $name

$description

## Author

$author

## Building

```bash
aptos move compile
```

## Testing

```bash
aptos move test
```

## Publishing

```bash
movr publish --pkg-version 1.0.0
```
"""

GITIGNORE = """\
# Build outputs
build/
.aptos/

# Logs
*.log
"""

TEMPLATES = {
    "basic": {
        "sources/$name.move": BASIC_MODULE,
        "tests/${name}_tests.move": BASIC_TESTS,
    },
    "token": {
        "sources/token.move": TOKEN_MODULE,
        "tests/token_tests.move": TOKEN_TESTS,
    },
    "defi": {
        "sources/defi.move": DEFI_MODULE,
        "tests/defi_tests.move": DEFI_TESTS,
    },
}
