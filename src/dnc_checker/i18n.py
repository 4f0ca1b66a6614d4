"""
Internationalization (i18n) module for the do-not-call registry checker.

Provides translations for all user-facing messages in Spanish (es) and
English (en).
"""

from typing import Optional


# Supported languages
SUPPORTED_LANGUAGES = frozenset({"es", "en"})
DEFAULT_LANGUAGE = "es"


# Translation dictionary with all messages
# Structure: {message_key: {language_code: translated_message}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    # Phone validation messages
    "validation.empty_input": {
        "es": "El número de teléfono está vacío",
        "en": "Phone number is empty",
    },
    "validation.parse_error": {
        "es": "No se pudo interpretar el número de teléfono: {number}",
        "en": "Could not parse phone number: {number}",
    },
    "validation.invalid_number": {
        "es": "Número de teléfono inválido para Uruguay: {number}",
        "en": "Invalid phone number for Uruguay: {number}",
    },
    "validation.wrong_region": {
        "es": "El número no es de Uruguay: {number}",
        "en": "Phone number is not from Uruguay: {number}",
    },
    "validation.valid": {
        "es": "Número válido: {formatted} ({number_type}), formato registro: {normalized}",
        "en": "Valid number: {formatted} ({number_type}), registry format: {normalized}",
    },

    # Registry status messages
    "status.registered": {
        "es": "Inscrito en el Registro No Llame",
        "en": "Registered in the do-not-call registry",
    },
    "status.not_registered": {
        "es": "No inscrito en el Registro No Llame",
        "en": "Not registered in the do-not-call registry",
    },
    "status.unknown": {
        "es": "Desconocido",
        "en": "Unknown",
    },

    # Error messages
    "error.transport": {
        "es": "No se pudo contactar el portal: {message}",
        "en": "Could not reach the portal: {message}",
    },
    "error.captcha_unsolvable": {
        "es": "No se pudo resolver el CAPTCHA: {message}",
        "en": "Could not solve the CAPTCHA: {message}",
    },
    "error.structure": {
        "es": "La estructura del portal cambió ({code})",
        "en": "Portal structure changed ({code})",
    },
    "error.ocr": {
        "es": "Error de OCR: {message}",
        "en": "OCR error: {message}",
    },
    "error.unresolved": {
        "es": "Sin respuesta del registro tras {attempts} intentos de CAPTCHA",
        "en": "No registry answer after {attempts} CAPTCHA attempts",
    },

    # Cache messages
    "cache.stats_header": {
        "es": "Estadísticas de caché",
        "en": "Cache statistics",
    },
    "cache.backend": {
        "es": "Backend",
        "en": "Backend",
    },
    "cache.enabled": {
        "es": "Habilitada",
        "en": "Enabled",
    },
    "cache.reachable": {
        "es": "Accesible",
        "en": "Reachable",
    },
    "cache.max_age": {
        "es": "Antigüedad máxima (horas)",
        "en": "Max age (hours)",
    },
    "cache.total_entries": {
        "es": "Entradas",
        "en": "Entries",
    },
    "cache.oldest_entry": {
        "es": "Entrada más antigua",
        "en": "Oldest entry",
    },
    "cache.newest_entry": {
        "es": "Entrada más reciente",
        "en": "Newest entry",
    },
    "cache.cleared": {
        "es": "Caché eliminada para {number}",
        "en": "Cache cleared for {number}",
    },
    "cache.not_found": {
        "es": "No hay entrada en caché para {number}",
        "en": "No cache entry for {number}",
    },
    "cache.expired_removed": {
        "es": "Entradas vencidas eliminadas: {count}",
        "en": "Expired entries removed: {count}",
    },
    "cache.number_required": {
        "es": "Se requiere un número para 'cache clear'",
        "en": "A number is required for 'cache clear'",
    },

    # Configuration messages
    "config.loaded": {
        "es": "Configuración cargada desde: {path}",
        "en": "Configuration loaded from: {path}",
    },
    "config.not_found": {
        "es": "No se encontró configuración en: {path}",
        "en": "No configuration found at: {path}",
    },
    "config.init_hint": {
        "es": "Use 'config init' para crear una configuración por defecto.",
        "en": "Use 'config init' to create a default configuration.",
    },
    "config.created": {
        "es": "Configuración creada en: {path}",
        "en": "Configuration created at: {path}",
    },
    "config.exists": {
        "es": "Ya existe una configuración en: {path} (use --force para sobrescribir)",
        "en": "Configuration already exists at: {path} (use --force to overwrite)",
    },
    "config.valid": {
        "es": "La configuración en {path} es válida.",
        "en": "Configuration at {path} is valid.",
    },
    "config.invalid": {
        "es": "Configuración inválida: {message}",
        "en": "Invalid configuration: {message}",
    },

    # Simulation mode messages
    "simulation.enabled": {
        "es": "Modo simulación activado - sin solicitudes de red reales",
        "en": "Simulation mode enabled - no real network requests",
    },

    # Self-test messages
    "selftest.header": {
        "es": "Autodiagnóstico del verificador No Llame",
        "en": "Do-Not-Call Checker Self-Test",
    },
    "selftest.config_validation": {
        "es": "Validación de configuración:",
        "en": "Configuration Validation:",
    },
    "selftest.config_valid": {
        "es": "La configuración es válida",
        "en": "Configuration is valid",
    },
    "selftest.config_invalid": {
        "es": "La configuración es inválida",
        "en": "Configuration is invalid",
    },
    "selftest.warnings": {
        "es": "Advertencias:",
        "en": "Warnings:",
    },
    "selftest.connectivity": {
        "es": "Dependencias:",
        "en": "Dependencies:",
    },
    "selftest.check_portal": {
        "es": "Portal del registro",
        "en": "Registry portal",
    },
    "selftest.check_ocr": {
        "es": "Motor OCR",
        "en": "OCR engine",
    },
    "selftest.check_cache": {
        "es": "Caché de resultados",
        "en": "Result cache",
    },
    "selftest.success": {
        "es": "Autodiagnóstico completado con éxito",
        "en": "Self-test completed successfully",
    },
    "selftest.failed": {
        "es": "Autodiagnóstico fallido",
        "en": "Self-test failed",
    },
    "selftest.duration": {
        "es": "Duración total",
        "en": "Total duration",
    },

    # CLI messages
    "cli.checking_number": {
        "es": "Verificando número: {number}",
        "en": "Checking number: {number}",
    },
    "cli.result": {
        "es": "Resultado: {status}",
        "en": "Result: {status}",
    },
    "cli.response": {
        "es": "Respuesta del registro: {response}",
        "en": "Registry response: {response}",
    },
    "cli.from_cache": {
        "es": "Desde caché ({age:.1f} horas)",
        "en": "From cache ({age:.1f} hours old)",
    },
    "cli.attempts": {
        "es": "Intentos de CAPTCHA: {attempts} ({fallback} de respaldo)",
        "en": "CAPTCHA attempts: {attempts} ({fallback} fallback)",
    },
    "cli.duration": {
        "es": "Duración: {duration:.0f}ms",
        "en": "Duration: {duration:.0f}ms",
    },
    "cli.checking_count": {
        "es": "Verificando {count} número(s)...",
        "en": "Checking {count} number(s)...",
    },
    "cli.summary": {
        "es": "Resumen: {registered} inscritos, {not_registered} no inscritos, {unknown} desconocidos",
        "en": "Summary: {registered} registered, {not_registered} not registered, {unknown} unknown",
    },
    "cli.results_written": {
        "es": "Resultados escritos en: {path}",
        "en": "Results written to: {path}",
    },
    "cli.file_not_found": {
        "es": "Archivo no encontrado: {path}",
        "en": "File not found: {path}",
    },
    "cli.no_numbers": {
        "es": "No se encontraron números en el archivo",
        "en": "No numbers found in file",
    },
    "cli.ocr_result": {
        "es": "Texto reconocido: {text} (fuente: {source})",
        "en": "Recognized text: {text} (source: {source})",
    },
    "cli.ocr_no_candidate": {
        "es": "Ningún candidato superó el filtro de longitud",
        "en": "No candidate passed length filtering",
    },
}


def get_message(
    key: str,
    language: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Get a translated message by key.

    Args:
        key: The message key (e.g., 'validation.empty_input')
        language: Language code ('es' or 'en'). Defaults to DEFAULT_LANGUAGE.
        **kwargs: Format arguments for the message template

    Returns:
        The translated and formatted message string.
        If the key is not found, returns the key itself.
        If the language is not found, falls back to DEFAULT_LANGUAGE.

    Examples:
        >>> get_message('status.unknown', 'en')
        'Unknown'
        >>> get_message('cli.checking_number', 'es', number='98297150')
        'Verificando número: 98297150'
    """
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    translations = TRANSLATIONS.get(key)
    if translations is None:
        return key

    message = translations.get(language)
    if message is None:
        message = translations.get(DEFAULT_LANGUAGE)
    if message is None:
        return key

    if kwargs:
        try:
            message = message.format(**kwargs)
        except (KeyError, ValueError):
            # Missing or mistyped arguments leave the template unformatted
            pass

    return message


def get_all_message_keys() -> set[str]:
    """Get all available message keys."""
    return set(TRANSLATIONS.keys())


def has_translation(key: str, language: str) -> bool:
    """
    Check if a translation exists for a key and language.

    Args:
        key: The message key
        language: The language code

    Returns:
        True if translation exists, False otherwise.
    """
    translations = TRANSLATIONS.get(key)
    if translations is None:
        return False
    return language in translations


def get_missing_translations(language: str) -> set[str]:
    """Get all message keys that are missing translations for a language."""
    return {
        key for key, translations in TRANSLATIONS.items()
        if language not in translations
    }


def validate_translations() -> dict[str, set[str]]:
    """
    Validate that all languages have all translations.

    Returns:
        Dictionary mapping language codes to sets of missing message keys.
        Empty sets indicate complete translations.
    """
    return {
        language: get_missing_translations(language)
        for language in SUPPORTED_LANGUAGES
    }
