"""
Pix BR Code ("copia e cola") payload codec.

The payload is EMV-MPM style tag-length-value text: a 2-digit id, a 2-digit
zero-padded length and the value. It always ends with the CRC field `6304`
followed by 4 uppercase hex digits. The CRC is CRC-16/CCITT-FALSE (poly 0x1021,
init 0xFFFF, no reflection, no final xor). It covers every preceding byte,
including the `6304` id and length of the CRC field itself.
Scanners reject the code on any deviation.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from domain.payment.exceptions import PaymentValidationError


PIX_GUI = "br.gov.bcb.pix"

ID_PAYLOAD_FORMAT = "00"
ID_MERCHANT_ACCOUNT = "26"
ID_MERCHANT_CATEGORY = "52"
ID_CURRENCY = "53"
ID_AMOUNT = "54"
ID_COUNTRY = "58"
ID_MERCHANT_NAME = "59"
ID_MERCHANT_CITY = "60"
ID_ADDITIONAL_DATA = "62"
ID_CRC = "63"

# Sub-fields
ID_GUI = "00"
ID_KEY = "01"
ID_DESCRIPTION = "02"
ID_TXID = "05"

CRC_PREFIX = ID_CRC + "04"
CURRENCY_BRL = "986"
MAX_FIELD_LENGTH = 99
MAX_MERCHANT_NAME = 25
MAX_MERCHANT_CITY = 15
MAX_TXID = 25
NO_TXID = "***"

_TXID_RE = re.compile(r"^[A-Za-z0-9]{1,25}$")


class PixPayloadError(PaymentValidationError):
    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message, field=field)


def crc16_ccitt_false(data: bytes) -> int:
    crc = 0xFFFF
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def format_crc(text: str) -> str:
    return f"{crc16_ccitt_false(text.encode('utf-8')):04X}"


def to_ascii(text: str) -> str:
    """Drop accents (São Paulo -> Sao Paulo); scanners expect plain ASCII."""
    normalized = unicodedata.normalize("NFKD", text)
    return normalized.encode("ascii", "ignore").decode("ascii").strip()


def txid_from_reference(reference: str) -> str:
    """Pix txids are 1-25 alphanumerics; derive one from a local payment id."""
    txid = re.sub(r"[^A-Za-z0-9]", "", reference)[:MAX_TXID]
    if not txid:
        raise PixPayloadError("Transaction id must contain alphanumeric characters", field="txid")
    return txid


def encode_field(tag: str, value: str) -> str:
    if len(value) > MAX_FIELD_LENGTH:
        raise PixPayloadError(f"Field {tag} exceeds {MAX_FIELD_LENGTH} characters", field=tag)
    return f"{tag}{len(value):02d}{value}"


def parse_tlv(text: str) -> dict[str, str]:
    """Decode one level of TLV; nested templates are plain strings to parse again."""
    fields: dict[str, str] = {}
    pos = 0
    while pos < len(text):
        header = text[pos:pos + 4]
        if len(header) < 4 or not header.isdigit():
            raise PixPayloadError(f"Malformed field header at position {pos}")
        tag, length = header[:2], int(header[2:])
        value = text[pos + 4:pos + 4 + length]
        if len(value) != length:
            raise PixPayloadError(f"Field {tag} is truncated", field=tag)
        fields[tag] = value
        pos += 4 + length
    return fields


def validate_payload(payload: str) -> bool:
    """Recompute the CRC over everything but the trailing 4 hex digits."""
    if len(payload) < 8 or payload[-8:-4] != CRC_PREFIX:
        return False
    try:
        expected = format_crc(payload[:-4])
    except UnicodeEncodeError:
        return False
    return expected == payload[-4:].upper()


@dataclass(frozen=True)
class PixPayload:
    pix_key: str
    merchant_name: str
    merchant_city: str
    amount: Optional[Decimal] = None
    txid: str = NO_TXID
    description: Optional[str] = None

    def build(self) -> str:
        if not self.pix_key:
            raise PixPayloadError("Pix key is required", field="pix_key")
        name = to_ascii(self.merchant_name)[:MAX_MERCHANT_NAME]
        city = to_ascii(self.merchant_city)[:MAX_MERCHANT_CITY]
        if not name or not city:
            raise PixPayloadError("Merchant name and city are required", field="merchant_name")
        if self.txid != NO_TXID and not _TXID_RE.match(self.txid):
            raise PixPayloadError("Transaction id must be 1-25 alphanumerics", field="txid")

        account = encode_field(ID_GUI, PIX_GUI) + encode_field(ID_KEY, self.pix_key)
        if self.description:
            account += encode_field(ID_DESCRIPTION, to_ascii(self.description))

        parts = [
            encode_field(ID_PAYLOAD_FORMAT, "01"),
            encode_field(ID_MERCHANT_ACCOUNT, account),
            encode_field(ID_MERCHANT_CATEGORY, "0000"),
            encode_field(ID_CURRENCY, CURRENCY_BRL),
        ]
        if self.amount is not None:
            if self.amount <= 0:
                raise PixPayloadError("Amount must be positive", field="amount")
            parts.append(encode_field(ID_AMOUNT, str(self.amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))))
        parts += [
            encode_field(ID_COUNTRY, "BR"),
            encode_field(ID_MERCHANT_NAME, name),
            encode_field(ID_MERCHANT_CITY, city),
            encode_field(ID_ADDITIONAL_DATA, encode_field(ID_TXID, self.txid)),
        ]
        body = "".join(parts) + CRC_PREFIX
        return body + format_crc(body)

    @classmethod
    def decode(cls, payload: str) -> "PixPayload":
        if not validate_payload(payload):
            raise PixPayloadError("Invalid payload checksum")
        fields = parse_tlv(payload)
        account = parse_tlv(fields.get(ID_MERCHANT_ACCOUNT, ""))
        if account.get(ID_GUI, "").lower() != PIX_GUI:
            raise PixPayloadError("Not a Pix payload", field=ID_MERCHANT_ACCOUNT)
        additional = parse_tlv(fields.get(ID_ADDITIONAL_DATA, ""))
        amount = fields.get(ID_AMOUNT)
        return cls(
            pix_key=account.get(ID_KEY, ""),
            merchant_name=fields.get(ID_MERCHANT_NAME, ""),
            merchant_city=fields.get(ID_MERCHANT_CITY, ""),
            amount=Decimal(amount) if amount else None,
            txid=additional.get(ID_TXID, NO_TXID),
            description=account.get(ID_DESCRIPTION),
        )


def build_payload(
    *,
    pix_key: str,
    merchant_name: str,
    merchant_city: str,
    amount: Optional[Decimal] = None,
    txid: str = NO_TXID,
    description: Optional[str] = None,
) -> str:
    return PixPayload(
        pix_key=pix_key,
        merchant_name=merchant_name,
        merchant_city=merchant_city,
        amount=amount,
        txid=txid,
        description=description,
    ).build()
