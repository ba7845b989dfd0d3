import re

UEN_FORMATS = {
    "BUSINESS": re.compile(r"^\d{8,9}[A-Z]$"),
    "LOCAL_COMPANY": re.compile(r"^\d{4}\d{5}[A-Z]$"),
    "OTHER_ENTITY": re.compile(r"^[TRS]\d{2}[A-Z]{2}\d{4}[A-Z]$"),
    "VCC": re.compile(r"^\d{4}[A-Z]{5}[A-Z]$"),
}


def normalize_uen(uen: str) -> str:
    """Uppercase and strip everything that is not a letter or digit."""
    return re.sub(r"[^0-9A-Z]", "", (uen or "").upper())


def is_valid_format(uen: str) -> bool:
    return any(pattern.match(uen) for pattern in UEN_FORMATS.values())


def entity_type_for(uen: str) -> str:
    if UEN_FORMATS["LOCAL_COMPANY"].match(uen):
        return "LOCAL_COMPANY"
    if UEN_FORMATS["BUSINESS"].match(uen):
        return "SOLE_PROPRIETORSHIP"
    if uen.startswith("T") and "LL" in uen:
        return "LLP"
    if UEN_FORMATS["VCC"].match(uen):
        return "VCC"
    if uen.startswith("T"):
        return "OTHER_ENTITY"
    if uen.startswith("S"):
        return "SOCIETY"
    if uen.startswith("R"):
        return "REPRESENTATIVE_OFFICE"
    return "UNKNOWN"
