"""
QR code service - prepares share links for QR transport.

Rendering the symbol is left to the caller; this module produces the text to
encode, checks it against the QR size ceiling and picks an error correction
level.
"""

from dataclasses import dataclass
from typing import Any, Dict

from src.services.logging_utils import get_service_logger
from src.services.sharing_service import Transport, encode_share_link
from src.utils.constants import CURRENT_SHARE_VERSION, MAX_QR_SIZE

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class QRCodeData:
    """Text to put in a QR code, with the recipe it came from."""

    deep_link: str
    recipe_id: str
    title: str
    error_correction: str


def get_qr_error_correction_level(data_size: int) -> str:
    """
    Pick an error correction level for the data size.

    Smaller payloads get more redundancy:
    H (30%) below 500, Q (25%) below 1000, M (15%) below 1500, otherwise L (7%).
    """
    if data_size < 500:
        return "H"
    if data_size < 1000:
        return "Q"
    if data_size < 1500:
        return "M"
    return "L"


def validate_qr_code_size(data: str) -> bool:
    """True if data fits in a QR code with margin below the alphanumeric ceiling."""
    return len(data) <= MAX_QR_SIZE


def generate_qr_code_data(recipe: Dict[str, Any], version: int = CURRENT_SHARE_VERSION) -> QRCodeData:
    """
    Encode a recipe for QR transport.

    Args:
        recipe: Stored recipe record
        version: Share format version to write

    Returns:
        QRCodeData with the deep link and its error correction level

    Raises:
        PayloadTooLarge: If the link is over the QR ceiling
    """
    logger.info(f"Generating QR code data for recipe: {recipe.get('title')}")
    deep_link = encode_share_link(recipe, version=version, transport=Transport.QR)
    return QRCodeData(
        deep_link=deep_link,
        recipe_id=recipe["id"],
        title=recipe["title"],
        error_correction=get_qr_error_correction_level(len(deep_link)),
    )
