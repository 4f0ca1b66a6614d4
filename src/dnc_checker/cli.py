"""
Command-line interface for the do-not-call registry checker.

This module provides the main CLI entry point with commands for:
- check: Check a single phone number against the registry
- check-list: Check multiple numbers from a file
- validate: Validate and normalize a phone number without checking it
- ocr: Run CAPTCHA recognition on an image file
- cache: Cache statistics and maintenance
- config: Configuration management
- self-test: Verify the portal, OCR engine and cache are usable

Exit codes for check: 0 not registered, 1 registered, 2 unknown or error.
"""

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .audit_logger import AuditLogger
from .cache_service import create_auto_cache_service
from .captcha_resolver import CaptchaResolver
from .config import MySQLConfig, SystemConfig, load_config_from_env
from .enums import RegistryStatus
from .exceptions import CaptchaUnsolvable, DncCheckerError, OCREngineError, TransportError, ValidationError
from .i18n import SUPPORTED_LANGUAGES, get_message
from .ocr_engine import create_ocr_engine
from .orchestrator import CheckOrchestrator, OrchestratorResult
from .phone_validator import PhoneValidator
from .self_test import SelfTest, run_self_test


EXIT_NOT_REGISTERED = 0
EXIT_REGISTERED = 1
EXIT_UNKNOWN = 2

DEFAULT_CONFIG_PATH = Path.home() / ".dnc_checker" / "config.json"

# Never written to a configuration file; supplied through the environment
SECRET_FIELDS = {
    "cache": ("blob_token", "mongodb_url"),
    "cache.mysql": ("password",),
}


def _apply_section(instance: Any, data: Any) -> Any:
    """Return a copy of a config dataclass with known keys from data applied."""
    if not isinstance(data, dict):
        return instance
    known = {f.name for f in dataclasses.fields(instance)}
    updates = {key: value for key, value in data.items() if key in known}
    return dataclasses.replace(instance, **updates)


def load_config_from_file(
    config_path: Path,
    base: Optional[SystemConfig] = None,
) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Missing sections and keys keep the values of base (by default the
    environment configuration); unknown keys are ignored.

    Args:
        config_path: Path to the configuration file
        base: Configuration the file is applied on top of

    Returns:
        SystemConfig if successful, None otherwise
    """
    base = base or load_config_from_env()
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise TypeError("configuration root must be an object")

        cache_data = dict(data.get("cache") or {})
        mysql_data = cache_data.pop("mysql", None)
        cache = _apply_section(base.cache, cache_data)
        if isinstance(mysql_data, dict):
            cache = dataclasses.replace(
                cache, mysql=_apply_section(cache.mysql or MySQLConfig(), mysql_data)
            )

        return dataclasses.replace(
            base,
            portal=_apply_section(base.portal, data.get("portal")),
            captcha=_apply_section(base.captcha, data.get("captcha")),
            ocr=_apply_section(base.ocr, data.get("ocr")),
            cache=cache,
            logging=_apply_section(base.logging, data.get("logging")),
            language=data.get("language", base.language),
            simulation_mode=data.get("simulation_mode", base.simulation_mode),
            startup_self_test=data.get("startup_self_test", base.startup_self_test),
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def config_to_dict(config: SystemConfig) -> dict:
    """Serializable form of a configuration, without secrets."""
    data = dataclasses.asdict(config)
    for field_name in SECRET_FIELDS["cache"]:
        data["cache"].pop(field_name, None)
    if data["cache"].get("mysql"):
        for field_name in SECRET_FIELDS["cache.mysql"]:
            data["cache"]["mysql"].pop(field_name, None)
    return data


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Environment configuration, overlaid with --config and command-line flags."""
    config = load_config_from_env()
    config_path = getattr(args, "config", None)
    if config_path:
        config = load_config_from_file(Path(config_path), base=config)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return None

    if getattr(args, "dry_run", False):
        config = dataclasses.replace(config, simulation_mode=True)
    if getattr(args, "language", None):
        config = dataclasses.replace(config, language=args.language)
    return config


def create_logger(config: SystemConfig, verbose: bool) -> Optional[AuditLogger]:
    if not verbose:
        return None
    return AuditLogger.from_config(config.logging)


def exit_code_for(status: RegistryStatus) -> int:
    if status == RegistryStatus.REGISTERED:
        return EXIT_REGISTERED
    if status == RegistryStatus.NOT_REGISTERED:
        return EXIT_NOT_REGISTERED
    return EXIT_UNKNOWN


def error_message(error: DncCheckerError, language: str) -> str:
    if isinstance(error, ValidationError):
        return get_message(f"validation.{error.code}", language, number=error.details.get("raw_input", ""))
    if isinstance(error, TransportError):
        return get_message("error.transport", language, message=error.message)
    if isinstance(error, CaptchaUnsolvable):
        return get_message("error.captcha_unsolvable", language, message=error.message)
    if isinstance(error, OCREngineError):
        return get_message("error.ocr", language, message=error.message)
    return error.message


def result_to_dict(outcome: OrchestratorResult) -> dict:
    return {
        "phoneNumber": outcome.phone_number,
        "fromCache": outcome.from_cache,
        "cacheAgeHours": round(outcome.cache_age_hours, 2) if outcome.cache_age_hours is not None else None,
        "durationMs": round(outcome.duration_ms, 1),
        "result": outcome.result.to_payload(),
    }


def print_result(outcome: OrchestratorResult, language: str, verbose: bool) -> None:
    result = outcome.result
    status_text = get_message(f"status.{result.status.value}", language)
    print(get_message("cli.result", language, status=status_text))

    if result.error:
        print(f"  {get_message('error.structure', language, code=result.error)}")
    elif result.status == RegistryStatus.UNKNOWN and not result.simulated:
        print(f"  {get_message('error.unresolved', language, attempts=result.captcha_solve_attempts)}")

    if result.response:
        print(f"  {get_message('cli.response', language, response=result.response)}")
    if outcome.from_cache:
        print(f"  {get_message('cli.from_cache', language, age=outcome.cache_age_hours or 0.0)}")

    if verbose:
        print(f"  {get_message('cli.attempts', language, attempts=result.captcha_solve_attempts, fallback=result.fallback_captchas)}")
        print(f"  {get_message('cli.duration', language, duration=outcome.duration_ms)}")


async def check_single_number(
    number: str,
    config: SystemConfig,
    ignore_cache: bool = False,
    as_json: bool = False,
    verbose: bool = False,
) -> int:
    """
    Check a single phone number.

    Args:
        number: Phone number in any accepted format
        config: System configuration
        ignore_cache: Skip the cache lookup
        as_json: Print the result as JSON instead of text
        verbose: Enable verbose output and logging

    Returns:
        Exit code (0 not registered, 1 registered, 2 unknown or error)
    """
    language = config.language

    if config.startup_self_test:
        self_test_result = await run_self_test(config=config, print_output=verbose, language=language)
        if not self_test_result.success:
            print(get_message("selftest.failed", language), file=sys.stderr)
            return EXIT_UNKNOWN

    if config.simulation_mode and not as_json:
        print(get_message("simulation.enabled", language))

    if not as_json:
        print(get_message("cli.checking_number", language, number=number))

    logger = create_logger(config, verbose)
    try:
        async with CheckOrchestrator(config=config, logger=logger) as orchestrator:
            outcome = await orchestrator.check(number, ignore_cache=ignore_cache)
    except DncCheckerError as e:
        if as_json:
            print(json.dumps({"success": False, **e.to_dict()}, indent=2, ensure_ascii=False))
        else:
            print(error_message(e, language), file=sys.stderr)
        return EXIT_UNKNOWN

    if as_json:
        print(json.dumps({"success": True, **result_to_dict(outcome)}, indent=2, ensure_ascii=False))
    else:
        print_result(outcome, language, verbose)

    return exit_code_for(outcome.result.status)


async def check_number_list(
    numbers_file: Path,
    config: SystemConfig,
    output_file: Optional[Path] = None,
    ignore_cache: bool = False,
    verbose: bool = False,
) -> int:
    """
    Check multiple phone numbers from a file, one per line.

    Numbers are checked one after another; a failure for one number is
    recorded and the next number is checked.

    Returns:
        Exit code (0 if every number got an answer, 2 otherwise)
    """
    language = config.language

    try:
        with open(numbers_file, "r", encoding="utf-8") as f:
            numbers = [line.strip() for line in f if line.strip() and not line.startswith("#")]
    except FileNotFoundError:
        print(get_message("cli.file_not_found", language, path=numbers_file), file=sys.stderr)
        return EXIT_UNKNOWN
    except OSError as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return EXIT_UNKNOWN

    if not numbers:
        print(get_message("cli.no_numbers", language), file=sys.stderr)
        return EXIT_UNKNOWN

    if config.simulation_mode:
        print(get_message("simulation.enabled", language))
    print(get_message("cli.checking_count", language, count=len(numbers)))

    logger = create_logger(config, verbose)
    results = []
    counts = {status: 0 for status in RegistryStatus}

    async with CheckOrchestrator(config=config, logger=logger) as orchestrator:
        for number in numbers:
            print(get_message("cli.checking_number", language, number=number))
            try:
                outcome = await orchestrator.check(number, ignore_cache=ignore_cache)
            except DncCheckerError as e:
                counts[RegistryStatus.UNKNOWN] += 1
                print(f"  {error_message(e, language)}")
                results.append({"input": number, "success": False, **e.to_dict()})
                continue

            counts[outcome.result.status] += 1
            status_text = get_message(f"status.{outcome.result.status.value}", language)
            print(f"  {get_message('cli.result', language, status=status_text)}")
            results.append({"input": number, "success": True, **result_to_dict(outcome)})

    print()
    print(get_message(
        "cli.summary",
        language,
        registered=counts[RegistryStatus.REGISTERED],
        not_registered=counts[RegistryStatus.NOT_REGISTERED],
        unknown=counts[RegistryStatus.UNKNOWN],
    ))

    if output_file:
        try:
            output_file.parent.mkdir(parents=True, exist_ok=True)
            with open(output_file, "w", encoding="utf-8") as f:
                json.dump(results, f, indent=2, ensure_ascii=False)
            print(get_message("cli.results_written", language, path=output_file))
        except OSError as e:
            print(f"Error writing results: {e}", file=sys.stderr)

    return EXIT_UNKNOWN if counts[RegistryStatus.UNKNOWN] else 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    config = resolve_config(args)
    if config is None:
        return EXIT_UNKNOWN

    return asyncio.run(check_single_number(
        number=args.number,
        config=config,
        ignore_cache=args.ignore_cache,
        as_json=args.json,
        verbose=args.verbose,
    ))


def cmd_check_list(args: argparse.Namespace) -> int:
    """Handle the 'check-list' command."""
    config = resolve_config(args)
    if config is None:
        return EXIT_UNKNOWN

    return asyncio.run(check_number_list(
        numbers_file=Path(args.file),
        config=config,
        output_file=Path(args.output) if args.output else None,
        ignore_cache=args.ignore_cache,
        verbose=args.verbose,
    ))


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle the 'validate' command."""
    language = args.language
    result = PhoneValidator().validate(args.number)

    if not result.valid:
        print(
            get_message(f"validation.{result.error.code.value}", language, number=args.number),
            file=sys.stderr,
        )
        return 1

    print(get_message(
        "validation.valid",
        language,
        formatted=result.formatted,
        number_type=result.number_type,
        normalized=result.normalized,
    ))
    return 0


def cmd_ocr(args: argparse.Namespace) -> int:
    """Handle the 'ocr' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    language = config.language

    try:
        image_bytes = Path(args.image).read_bytes()
    except OSError:
        print(get_message("cli.file_not_found", language, path=args.image), file=sys.stderr)
        return 1

    resolver = CaptchaResolver(
        engine=create_ocr_engine(config.ocr),
        max_workers=1,
        logger=create_logger(config, args.verbose),
    )
    try:
        ranked = resolver.resolve(
            image_bytes,
            config.captcha.charset,
            (config.captcha.min_candidate_length, config.captcha.max_candidate_length),
        )
    except OCREngineError as e:
        print(error_message(e, language), file=sys.stderr)
        return 1
    finally:
        resolver.close()

    if not ranked.candidates:
        print(get_message("cli.ocr_no_candidate", language))
        return 1

    print(get_message("cli.ocr_result", language, text=ranked.chosen_text, source=ranked.source.value))
    for candidate in ranked.candidates:
        print(f"  {candidate.text:<10} {candidate.confidence:6.1f}  {candidate.config_name}")
    if ranked.alternatives:
        print(f"  ~ {', '.join(ranked.alternatives)}")
    return 0


async def run_cache_action(action: str, number: Optional[str], config: SystemConfig) -> int:
    language = config.language
    cache = create_auto_cache_service(config.cache, logger=None)

    try:
        if action == "stats":
            stats = await cache.get_stats()
            print(get_message("cache.stats_header", language))
            print(f"  {get_message('cache.backend', language)}: {stats.backend}")
            print(f"  {get_message('cache.enabled', language)}: {stats.enabled}")
            print(f"  {get_message('cache.reachable', language)}: {stats.backend_reachable}")
            print(f"  {get_message('cache.max_age', language)}: {stats.max_age_hours}")
            if stats.total_entries is not None:
                print(f"  {get_message('cache.total_entries', language)}: {stats.total_entries}")
            if stats.oldest_entry:
                print(f"  {get_message('cache.oldest_entry', language)}: {stats.oldest_entry}")
            if stats.newest_entry:
                print(f"  {get_message('cache.newest_entry', language)}: {stats.newest_entry}")
            return 0

        if action == "clear":
            if not number:
                print(get_message("cache.number_required", language), file=sys.stderr)
                return 1
            try:
                phone_number = PhoneValidator().normalize_or_raise(number)
            except ValidationError as e:
                print(error_message(e, language), file=sys.stderr)
                return 1
            if await cache.clear(phone_number):
                print(get_message("cache.cleared", language, number=phone_number))
            else:
                print(get_message("cache.not_found", language, number=phone_number))
            return 0

        if action == "clear-expired":
            removed = await cache.clear_expired()
            print(get_message("cache.expired_removed", language, count=removed))
            return 0
    finally:
        await cache.close()

    return 1


def cmd_cache(args: argparse.Namespace) -> int:
    """Handle the 'cache' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    try:
        return asyncio.run(run_cache_action(args.action, args.number, config))
    except ValueError as e:
        print(get_message("config.invalid", config.language, message=e), file=sys.stderr)
        return 1


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = resolve_config(args)
    if config is None:
        return 1

    result = asyncio.run(run_self_test(
        config=config,
        print_output=True,
        language=config.language,
    ))
    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH
    language = args.language

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(get_message("config.not_found", language, path=config_path))
            print(get_message("config.init_hint", language))
            return 1

        print(get_message("config.loaded", language, path=config_path))
        print(json.dumps(config_to_dict(config), indent=2, ensure_ascii=False))
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(get_message("config.exists", language, path=config_path))
            return 1

        config = dataclasses.replace(SystemConfig(), language=language or SystemConfig().language)
        if save_config_to_file(config, config_path):
            print(get_message("config.created", language, path=config_path))
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        validation = SelfTest(config).validate_config()
        if not validation.valid:
            for error in validation.errors:
                print(get_message("config.invalid", language, message=error), file=sys.stderr)
            return 1

        print(get_message("config.valid", language, path=config_path))
        for warning in validation.warnings:
            print(f"  - {warning}")
        return 0

    return 1


def _add_common_arguments(parser: argparse.ArgumentParser, dry_run: bool = False) -> None:
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        default=None,
        help="Output language (default: es, or DNC_LANGUAGE)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output and logging",
    )
    if dry_run:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Simulation mode - no real network requests",
        )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="dnc-checker",
        description="Uruguayan do-not-call registry (Registro No Llame) checker",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'check' command
    check_parser = subparsers.add_parser(
        "check",
        help="Check a single phone number against the registry",
    )
    check_parser.add_argument(
        "number",
        help="Phone number to check (e.g., 098297150 or +59898297150)",
    )
    check_parser.add_argument(
        "--ignore-cache",
        action="store_true",
        help="Skip the cache lookup and query the registry",
    )
    check_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )
    _add_common_arguments(check_parser, dry_run=True)
    check_parser.set_defaults(func=cmd_check)

    # 'check-list' command
    check_list_parser = subparsers.add_parser(
        "check-list",
        help="Check multiple phone numbers from a file",
    )
    check_list_parser.add_argument(
        "file",
        help="Path to file containing phone numbers (one per line)",
    )
    check_list_parser.add_argument(
        "--output", "-o",
        help="Path to write results as JSON",
    )
    check_list_parser.add_argument(
        "--ignore-cache",
        action="store_true",
        help="Skip the cache lookup and query the registry",
    )
    _add_common_arguments(check_list_parser, dry_run=True)
    check_list_parser.set_defaults(func=cmd_check_list)

    # 'validate' command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate and normalize a phone number",
    )
    validate_parser.add_argument(
        "number",
        help="Phone number to validate",
    )
    validate_parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        default="es",
        help="Output language (default: es)",
    )
    validate_parser.set_defaults(func=cmd_validate)

    # 'ocr' command
    ocr_parser = subparsers.add_parser(
        "ocr",
        help="Run CAPTCHA recognition on an image file",
    )
    ocr_parser.add_argument(
        "image",
        help="Path to the CAPTCHA image",
    )
    _add_common_arguments(ocr_parser)
    ocr_parser.set_defaults(func=cmd_ocr)

    # 'cache' command
    cache_parser = subparsers.add_parser(
        "cache",
        help="Result cache statistics and maintenance",
    )
    cache_parser.add_argument(
        "action",
        choices=["stats", "clear", "clear-expired"],
        help="Cache action",
    )
    cache_parser.add_argument(
        "number",
        nargs="?",
        help="Phone number (for 'clear')",
    )
    _add_common_arguments(cache_parser)
    cache_parser.set_defaults(func=cmd_cache)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        default="es",
        help="Output language and default language for a new configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    # 'self-test' command
    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Verify the portal, OCR engine and cache are usable",
    )
    _add_common_arguments(self_test_parser)
    self_test_parser.set_defaults(func=cmd_self_test)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
