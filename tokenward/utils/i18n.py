"""
Internationalization utilities for user-facing and log-facing error text.

Messages live in gettext catalogues under ``tokenward/locales/<lang>/LC_MESSAGES``.
Each ``messages.po`` is compiled with Babel when first needed and served
through ``babel.support.Translations``; a compiled ``messages.mo`` next to it
takes precedence when present.

Unknown languages fall back to English and keys missing from a catalogue fall
back to the English text, then to the key itself, so a missing translation
never raises.
"""

from io import BytesIO
from pathlib import Path
from typing import Dict, List

from babel.messages.mofile import write_mo
from babel.messages.pofile import read_po
from babel.support import Translations
from structlog import get_logger

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "en"
DOMAIN = "messages"
LOCALES_DIR = Path(__file__).resolve().parent.parent / "locales"

_translations: Dict[str, Translations] = {}


def _catalog_path(language: str, suffix: str) -> Path:
    return LOCALES_DIR / language / "LC_MESSAGES" / f"{DOMAIN}{suffix}"


def load_translations(language: str) -> Translations:
    """Load the catalogue for ``language`` from its ``.mo`` file or its ``.po`` source."""
    mo_path = _catalog_path(language, ".mo")
    if mo_path.is_file():
        with mo_path.open("rb") as mo_file:
            return Translations(mo_file, domain=DOMAIN)

    with _catalog_path(language, ".po").open("rb") as po_file:
        catalog = read_po(po_file, locale=language, domain=DOMAIN)
    compiled = BytesIO()
    write_mo(compiled, catalog)
    compiled.seek(0)
    return Translations(compiled, domain=DOMAIN)


def get_supported_languages() -> List[str]:
    return sorted(path.name for path in LOCALES_DIR.iterdir() if _catalog_path(path.name, ".po").is_file())


def setup_i18n() -> None:
    """
    Load every catalogue found under the locales directory.

    Raises:
        FileNotFoundError: If the locales directory is missing.
    """
    if not LOCALES_DIR.is_dir():
        raise FileNotFoundError(f"Locales directory not found: {LOCALES_DIR}")
    for language in get_supported_languages():
        _translations[language] = load_translations(language)
        logger.debug("Translations loaded", language=language)
    logger.info("i18n initialised", default_locale=DEFAULT_LANGUAGE, languages=sorted(_translations))


def get_translated_message(key: str, language: str = DEFAULT_LANGUAGE, **params) -> str:
    """
    Return the message for ``key`` in ``language``.

    Args:
        key: Message identifier (the catalogue msgid).
        language: ISO language code; falls back to English when unsupported.
        **params: Values interpolated into ``{placeholder}`` fields.

    Returns:
        str: The translated (and formatted) message.
    """
    if not _translations:
        setup_i18n()

    default = _translations[DEFAULT_LANGUAGE]
    translation = _translations.get(language, default)
    message = translation.gettext(key)
    if message == key and translation is not default:
        message = default.gettext(key)
    if message == key:
        logger.warning("Translation key not found", key=key, locale=language)

    if params:
        try:
            return message.format(**params)
        except (KeyError, IndexError):
            return message
    return message
