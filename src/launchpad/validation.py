"""Pure, synchronous validation of deployment parameters. No I/O."""
import json
import re
from dataclasses import dataclass, field

from xrpl.core.addresscodec import is_valid_classic_address

import launchpad.constants as C
from launchpad.models import ImageFile, TokenDeployParams

TOKEN_NAME_RE = re.compile(r"^[a-zA-Z0-9\s-]+$")
TOKEN_SYMBOL_RE = re.compile(r"^[A-Z0-9]+$")

MAX_SUPPLY = 0x7FFF_FFFF_FFFF_FFFF  # MPT MaximumAmount ceiling
MIN_IMAGE_DIM = 64
MAX_IMAGE_DIM = 2048

# room for an ipfs:// CIDv1 when the URI is only known after upload
PENDING_UPLOAD_URI = "ipfs://" + "b" * 59


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: dict[str, str] = field(default_factory=dict)

    def details(self) -> str:
        return " ".join(self.errors.values())


def is_valid_address(address: str) -> bool:
    return bool(address) and is_valid_classic_address(address)


def is_valid_token_name(name: str) -> bool:
    return bool(name) and len(name) <= 32 and TOKEN_NAME_RE.match(name) is not None


def is_valid_token_symbol(symbol: str) -> bool:
    return bool(symbol) and len(symbol) <= 12 and TOKEN_SYMBOL_RE.match(symbol) is not None


def is_valid_decimals(decimals) -> bool:
    return isinstance(decimals, int) and not isinstance(decimals, bool) and 0 <= decimals <= 18


def is_valid_supply(supply: str) -> bool:
    try:
        n = int(str(supply), 10)
    except (TypeError, ValueError):
        return False
    return 0 < n <= MAX_SUPPLY


def is_valid_description(description: str) -> bool:
    return len(description) <= C.MAX_DESCRIPTION_LENGTH


def token_metadata_document(params: TokenDeployParams, metadata_uri: str | None) -> bytes:
    """Compact XLS-89 MPTokenMetadata JSON.

    ``icon`` points at the off-chain metadata document, which carries the
    image; it is left out when the deployment has no URI.
    """
    doc = {
        "ticker": params.symbol,
        "name": params.name,
        "asset_class": "other",
        "issuer_name": params.admin_wallet,
    }
    if metadata_uri:
        doc["icon"] = metadata_uri
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def is_valid_metadata_size(params: TokenDeployParams) -> bool:
    uri = params.metadata_uri
    if uri is None and params.has_offchain_content:
        uri = PENDING_UPLOAD_URI
    return len(token_metadata_document(params, uri)) <= C.MAX_METADATA_BYTES


def validate_image(image: ImageFile) -> ValidationResult:
    errors: dict[str, str] = {}
    if not image.content_type:
        errors["image"] = "Unable to determine file type"
        return ValidationResult(False, errors)
    if image.content_type not in C.ALLOWED_IMAGE_TYPES:
        errors["image"] = "File must be PNG, JPG, or SVG"
        return ValidationResult(False, errors)
    if image.size == 0:
        errors["image"] = "Image file is empty"
    elif image.size > C.MAX_IMAGE_BYTES:
        errors["image"] = "File size must be less than 5MB"
    elif image.width is not None and image.height is not None:
        if min(image.width, image.height) < MIN_IMAGE_DIM:
            errors["image"] = f"Image dimensions must be at least {MIN_IMAGE_DIM}px"
        elif max(image.width, image.height) > MAX_IMAGE_DIM:
            errors["image"] = f"Image dimensions must not exceed {MAX_IMAGE_DIM}px"
    return ValidationResult(not errors, errors)


def validate_token_params(params: TokenDeployParams) -> ValidationResult:
    errors: dict[str, str] = {}

    if not is_valid_token_name(params.name):
        errors["name"] = "Token name must be 1-32 alphanumeric characters"
    if not is_valid_token_symbol(params.symbol):
        errors["symbol"] = "Token symbol must be 1-12 uppercase letters"
    if not is_valid_decimals(params.decimals):
        errors["decimals"] = "Decimals must be between 0 and 18"
    if not is_valid_supply(params.initial_supply):
        errors["initial_supply"] = "Initial supply must be a positive number"
    if not is_valid_address(params.admin_wallet):
        errors["admin_wallet"] = "Invalid XRPL address format"

    if params.metadata is not None:
        img = validate_image(params.metadata.image)
        errors.update(img.errors)
        if not is_valid_description(params.metadata.description):
            errors["description"] = "Metadata description must be 500 characters or fewer"

    if not is_valid_metadata_size(params):
        errors["metadata_uri"] = f"Token metadata must fit in {C.MAX_METADATA_BYTES} bytes, use a shorter metadata URI"

    return ValidationResult(not errors, errors)
