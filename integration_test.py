#!/usr/bin/env python3
"""
End-to-end integration test for skm.

Runs the library and the installed CLI against throwaway directories: generate
keys, export them, import them into a fresh directory under every merge
strategy, and check the bytes that land on disk.
"""

import json
import os
import shutil
import subprocess
import sys
import tempfile
from datetime import datetime
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

# Test results tracking
RESULTS = {"passed": 0, "failed": 0, "tests": []}

WORK_DIR: Path | None = None
PASSPHRASE = "integration-passphrase"


def log(msg: str, level: str = "INFO") -> None:
    """Print a log message."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] [{level}] {msg}")


def integration_test(name: str):
    """Decorator for test functions."""
    def decorator(func):
        def wrapper(*args, **kwargs):
            log(f"Running: {name}")
            try:
                result = func(*args, **kwargs)
                if result:
                    RESULTS["passed"] += 1
                    RESULTS["tests"].append({"name": name, "status": "PASS"})
                    log(f"  PASS: {name}", "PASS")
                else:
                    RESULTS["failed"] += 1
                    RESULTS["tests"].append({"name": name, "status": "FAIL"})
                    log(f"  FAIL: {name}", "FAIL")
                # Return None to avoid pytest warning about return values
                return None
            except Exception as e:
                RESULTS["failed"] += 1
                RESULTS["tests"].append({"name": name, "status": "ERROR", "error": str(e)})
                log(f"  ERROR: {name} - {e}", "ERROR")
                import traceback
                traceback.print_exc()
                return None
        return wrapper
    return decorator


def section(title: str) -> None:
    """Print a section header."""
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def skm(*args: str, ssh_dir: Path | None = None) -> subprocess.CompletedProcess:
    """Run the CLI with an isolated config and SSH directory."""
    env = dict(os.environ)
    env["SKM_CONFIG"] = str(WORK_DIR / "config.yaml")
    env["SKM_EXPORT_DIR"] = str(WORK_DIR / "exports")
    env["SKM_SSH_DIR"] = str(ssh_dir or WORK_DIR / "source")
    env["PYTHONPATH"] = str(Path(__file__).parent / "src")
    return subprocess.run(
        [sys.executable, "-m", "skm", *args],
        capture_output=True, text=True, env=env
    )


# =============================================================================
# SECTION 1: Module Imports
# =============================================================================

@integration_test("Import skm.backup module")
def test_import_backup():
    from skm import backup
    return hasattr(backup, "BackupManager")


@integration_test("Import skm.keys module")
def test_import_keys():
    from skm import keys
    return hasattr(keys, "KeyScanner")


@integration_test("Import skm.crypto module")
def test_import_crypto():
    from skm import crypto
    return hasattr(crypto, "EncryptionService")


# =============================================================================
# SECTION 2: Library Round Trip
# =============================================================================

@integration_test("Generate ed25519 and ecdsa keys")
def test_generate_keys():
    from skm.keys import KeyGenerator, KeyGenOptions, KeyType
    generator = KeyGenerator(WORK_DIR / "source")
    generator.generate(KeyGenOptions(filename="id_ed25519", comment="it@host"))
    generator.generate(KeyGenOptions(key_type=KeyType.ECDSA, filename="id_ecdsa", comment="it@host"))
    return (WORK_DIR / "source" / "id_ecdsa.pub").exists()


@integration_test("Export and import with BackupManager")
def test_library_round_trip():
    from skm.backup import BackupManager
    from skm.keys import KeyScanner
    records = KeyScanner(WORK_DIR / "source").scan()
    backup = WORK_DIR / "library.skm"
    BackupManager(WORK_DIR / "source").export(records, backup, PASSPHRASE)

    target = WORK_DIR / "library-restore"
    report = BackupManager(target).import_backup(backup, PASSPHRASE)
    return report.imported == ["id_ecdsa", "id_ed25519"] and all(
        (target / r.name).read_bytes() == r.private_key for r in records
    )


# =============================================================================
# SECTION 3: CLI Commands
# =============================================================================

@integration_test("CLI: skm --version")
def test_cli_version():
    result = skm("--version")
    return result.returncode == 0 and "0.1.0" in result.stdout


@integration_test("CLI: skm list --format json")
def test_cli_list_json():
    result = skm("list", "--format", "json")
    if result.returncode != 0:
        return False
    try:
        data = json.loads(result.stdout)
    except (json.JSONDecodeError, ValueError):
        return False
    return [item["name"] for item in data] == ["id_ecdsa", "id_ed25519"]


@integration_test("CLI: skm export")
def test_cli_export():
    result = skm("export", "-o", str(WORK_DIR / "cli.skm"), "-p", PASSPHRASE, "-d", "integration")
    return result.returncode == 0 and (WORK_DIR / "cli.skm").exists()


@integration_test("CLI: skm info")
def test_cli_info():
    result = skm("info", str(WORK_DIR / "cli.skm"), "-p", PASSPHRASE)
    return result.returncode == 0 and "integration" in result.stdout


@integration_test("CLI: skm import --dry-run writes nothing")
def test_cli_dry_run():
    target = WORK_DIR / "cli-restore"
    result = skm("import", str(WORK_DIR / "cli.skm"), "-p", PASSPHRASE, "--dry-run", ssh_dir=target)
    return result.returncode == 0 and not target.exists()


@integration_test("CLI: skm import")
def test_cli_import():
    target = WORK_DIR / "cli-restore"
    result = skm("import", str(WORK_DIR / "cli.skm"), "-p", PASSPHRASE, "--json", ssh_dir=target)
    if result.returncode != 0:
        return False
    report = json.loads(result.stdout)
    return report["imported"] == ["id_ecdsa", "id_ed25519"] and (target / "id_ed25519").exists()


@integration_test("CLI: skm import --strategy rename")
def test_cli_import_rename():
    target = WORK_DIR / "cli-restore"
    result = skm(
        "import", str(WORK_DIR / "cli.skm"), "-p", PASSPHRASE, "-s", "rename", "--json",
        ssh_dir=target
    )
    if result.returncode != 0:
        return False
    report = json.loads(result.stdout)
    return len(report["imported"]) == 2 and all(" -> " in item for item in report["imported"])


@integration_test("CLI: wrong passphrase exits 3")
def test_cli_wrong_passphrase():
    result = skm("import", str(WORK_DIR / "cli.skm"), "-p", "not-the-passphrase",
                 ssh_dir=WORK_DIR / "never-created")
    return result.returncode == 3 and not (WORK_DIR / "never-created").exists()


# =============================================================================
# CLEANUP
# =============================================================================

def cleanup():
    """Clean up test directories."""
    try:
        if WORK_DIR and WORK_DIR.exists():
            shutil.rmtree(WORK_DIR)
    except OSError:
        pass


# =============================================================================
# MAIN
# =============================================================================

def main():
    global WORK_DIR

    print("\n" + "="*60)
    print("  SKM INTEGRATION TEST")
    print("="*60)
    print(f"\nStarted: {datetime.now().isoformat()}")
    print(f"Python: {sys.version.split()[0]}")

    WORK_DIR = Path(tempfile.mkdtemp(prefix="skm_it_"))

    try:
        section("1. Module Imports")
        test_import_backup()
        test_import_keys()
        test_import_crypto()

        section("2. Library Round Trip")
        test_generate_keys()
        test_library_round_trip()

        section("3. CLI Commands")
        test_cli_version()
        test_cli_list_json()
        test_cli_export()
        test_cli_info()
        test_cli_dry_run()
        test_cli_import()
        test_cli_import_rename()
        test_cli_wrong_passphrase()

    finally:
        cleanup()

    # Print summary
    section("TEST SUMMARY")

    total = RESULTS["passed"] + RESULTS["failed"]
    pass_rate = (RESULTS["passed"] / total * 100) if total > 0 else 0

    print(f"Total Tests: {total}")
    print(f"Passed:      {RESULTS['passed']}")
    print(f"Failed:      {RESULTS['failed']}")
    print(f"Pass Rate:   {pass_rate:.1f}%")

    if RESULTS["failed"] > 0:
        print("\nFailed Tests:")
        for test in RESULTS["tests"]:
            if test["status"] != "PASS":
                error = test.get("error", "")
                print(f"  - {test['name']}: {test['status']}" + (f" ({error})" if error else ""))

    print("\n" + "="*60)
    if RESULTS["failed"] == 0:
        print("  ALL TESTS PASSED!")
    else:
        print(f"  {RESULTS['failed']} TEST(S) FAILED")
    print("="*60 + "\n")

    return 0 if RESULTS["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
