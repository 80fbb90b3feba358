"""
End-to-end walkthrough of the authentication and onboarding flows.

This script exercises:
1. Configuration loading and validation
2. Fresh install: sign up, onboarding, profile completion
3. Returning user: biometric challenge, cancellation, unlock
4. Profile migration from the legacy key layout
5. Error handling: offline provider, missing biometric hardware

Everything runs against an in-memory store and simulated collaborators.

Run with: uv run python scenario_walkthrough.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.local.biometric_platform import SimulatedBiometricPlatform
from adapters.local.identity_provider import LocalIdentityProvider
from healthgate.config import AppConfig, StorageConfig, validate_config
from healthgate.domain.models import (
    AppState,
    BiometricModality,
    BiometricOutcome,
    Credentials,
    UserProfile,
)
from healthgate.services.app_context import AppContext, app_session
from healthgate.services.storage import InMemoryKeyValueStore

console = Console()

DEMO_CREDENTIALS = Credentials(
    email="sam@example.com", password="correct-horse", confirm_password="correct-horse"
)

COMPLETE_PROFILE = UserProfile(
    age=34,
    height_feet=5,
    height_inches=9,
    weight=162.0,
    blood_sugar_level=92.0,
    total_cholesterol=185.0,
    hdl_cholesterol=55.0,
    ldl_cholesterol=110.0,
    is_completed=True,
)


def demo_config() -> AppConfig:
    return AppConfig(storage=StorageConfig(backend="memory"))


def expect(label: str, actual: object, expected: object) -> bool:
    ok = actual == expected
    mark = "✅" if ok else "❌"
    console.print(f"{mark} {label}: {actual}" + ("" if ok else f" (expected {expected})"))
    return ok


def show_state(context: AppContext) -> None:
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("state", context.state.value)
    table.add_row("is_authenticated", str(context.session.is_authenticated))
    table.add_row("requires_biometric_auth", str(context.session.requires_biometric_auth))
    table.add_row("profile completed", str(context.profile_store.profile.is_completed))
    console.print(table)


async def check_configuration() -> bool:
    console.print(Panel("🔧 Configuration", style="blue"))
    try:
        config = validate_config()
    except Exception as e:
        console.print(f"❌ Configuration invalid: {e}", style="red")
        return False
    return expect("storage backend configured", config.storage.backend in {"memory", "json_file"}, True)


async def fresh_install() -> bool:
    console.print(Panel("📱 Fresh install", style="blue"))
    store = InMemoryKeyValueStore()
    platform = SimulatedBiometricPlatform()
    provider = LocalIdentityProvider(store, iterations=1_000)

    async with app_session(platform, provider, config=demo_config(), store=store) as context:
        checks = [expect("after launch", context.state, AppState.LOGGED_OUT)]

        result = await context.session.sign_up(DEMO_CREDENTIALS)
        checks.append(expect("sign up succeeded", result.is_ok(), True))
        checks.append(expect("after sign up", context.state, AppState.ONBOARDING))

        await context.profile_store.save(COMPLETE_PROFILE)
        checks.append(expect("after profile saved", context.state, AppState.READY))

        enrolled = await context.biometric_gate.enroll()
        checks.append(expect("biometric enrollment", enrolled.is_ok(), True))
        show_state(context)

    return all(checks)


async def returning_user() -> bool:
    console.print(Panel("🔐 Returning user with biometric unlock", style="blue"))
    store = InMemoryKeyValueStore()
    provider = LocalIdentityProvider(store, iterations=1_000)

    # First launch: create the account, the profile and opt into biometrics.
    async with app_session(SimulatedBiometricPlatform(), provider, demo_config(), store) as context:
        await context.session.sign_up(DEMO_CREDENTIALS)
        await context.profile_store.save(COMPLETE_PROFILE)
        await context.biometric_gate.enroll()

    platform = SimulatedBiometricPlatform(
        modality=BiometricModality.FINGERPRINT,
        outcomes=[BiometricOutcome.USER_CANCELLED, BiometricOutcome.SUCCESS],
    )
    async with app_session(platform, provider, demo_config(), store) as context:
        checks = [expect("after relaunch", context.state, AppState.BIOMETRIC_CHALLENGE)]

        cancelled = await context.session.login_with_biometrics()
        checks.append(expect("cancelled challenge", cancelled.is_err(), True))
        checks.append(expect("state after cancel", context.state, AppState.BIOMETRIC_CHALLENGE))
        checks.append(expect("is_loading after cancel", context.session.is_loading, False))
        console.print(f"   message: {context.session.last_error}")

        unlocked = await context.session.login_with_biometrics()
        checks.append(expect("second challenge", unlocked.is_ok(), True))
        checks.append(expect("after unlock", context.state, AppState.READY))
        show_state(context)

    return all(checks)


async def legacy_migration() -> bool:
    console.print(Panel("🗄️  Legacy profile layout", style="blue"))
    store = InMemoryKeyValueStore(
        {
            "profile.age": 41,
            "profile.weight": 180.5,
            "profile.height_feet": 6,
            "profile.completed": True,
        }
    )
    provider = LocalIdentityProvider(store, iterations=1_000)

    async with app_session(SimulatedBiometricPlatform(), provider, demo_config(), store) as context:
        profile = context.profile_store.profile
        checks = [
            expect("age from legacy key", profile.age, 41),
            expect("height_inches absent", profile.height_inches, None),
            expect("completed flag", profile.is_completed, True),
            expect("structured record not written on load", "profile.v1" in store.snapshot(), False),
        ]

        await context.profile_store.update(height_inches=2)
        checks.append(expect("structured record after save", "profile.v1" in store.snapshot(), True))

    return all(checks)


async def error_handling() -> bool:
    console.print(Panel("🛡️  Error handling", style="blue"))
    store = InMemoryKeyValueStore()
    provider = LocalIdentityProvider(store, iterations=1_000)
    provider.online = False
    platform = SimulatedBiometricPlatform(modality=BiometricModality.NONE)

    async with app_session(platform, provider, demo_config(), store) as context:
        result = await context.session.sign_in(DEMO_CREDENTIALS)
        checks = [
            expect("offline sign in rejected", result.is_err(), True),
            expect("still logged out", context.state, AppState.LOGGED_OUT),
        ]
        console.print(f"   message: {context.session.last_error}")

        enrolled = await context.biometric_gate.enroll()
        checks.append(expect("enroll without hardware", enrolled.is_err(), True))
        console.print(f"   message: {context.biometric_gate.last_error}")

    return all(checks)


async def run_all_scenarios() -> None:
    console.print(Panel("🧪 Health Gate - Scenario Walkthrough", style="bold blue"))

    scenarios = [
        ("Configuration", check_configuration),
        ("Fresh install", fresh_install),
        ("Returning user", returning_user),
        ("Legacy migration", legacy_migration),
        ("Error handling", error_handling),
    ]

    results = []

    for name, scenario in scenarios:
        console.print(f"\n{'=' * 60}")
        try:
            result = await scenario()
            results.append((name, result))
        except KeyboardInterrupt:
            console.print("\n⏹️  Walkthrough interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Scenario Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Scenario", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for name, result in results:
        if result:
            summary_table.add_row(name, "✅ PASSED")
            passed += 1
        else:
            summary_table.add_row(name, "❌ FAILED")

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} scenarios passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_scenarios())
    except KeyboardInterrupt:
        console.print("\n👋 Walkthrough stopped by user", style="yellow")
