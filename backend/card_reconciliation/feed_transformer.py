"""
Card Feed Transformer

Transforms raw card-provider records into CardTransaction objects.

Handles:
- Field mapping from the various provider key spellings
- Type conversions (timestamps, decimals, enums)
- Validation with the offending field attached to the error

Classification and fraud annotations are NOT set here; the service
computes them after transformation.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from card_reconciliation.errors import MalformedTransactionError
from card_reconciliation.models import (
    CardTransaction,
    CorporateCard,
    ImportIssue,
    TransactionKind,
    TransactionLocation,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


def _first(payload: Dict[str, Any], *keys: str) -> Any:
    """First value present (not None, not empty string) among keys."""
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


class CardFeedTransformer:
    """
    Transforms raw provider transaction records into CardTransaction objects.
    """

    STATUS_MAPPING = {
        'pending': TransactionStatus.PENDING,
        'authorized': TransactionStatus.PENDING,
        'posted': TransactionStatus.POSTED,
        'settled': TransactionStatus.POSTED,
        'cleared': TransactionStatus.POSTED,
        'disputed': TransactionStatus.DISPUTED,
        'chargeback': TransactionStatus.DISPUTED,
        'reversed': TransactionStatus.REVERSED,
        'voided': TransactionStatus.REVERSED,
    }

    KIND_MAPPING = {
        'purchase': TransactionKind.PURCHASE,
        'debit': TransactionKind.PURCHASE,
        'refund': TransactionKind.REFUND,
        'credit': TransactionKind.REFUND,
        'fee': TransactionKind.FEE,
        'interest': TransactionKind.INTEREST,
    }

    DATETIME_FORMATS = (
        '%d/%m/%Y %H:%M:%S',
        '%d/%m/%Y %H:%M',
        '%d/%m/%Y',
    )

    # Top-level keys copied into metadata so fraud checks can see them
    METADATA_KEYS = ('velocity_flag', 'offline', 'fallback_entry', 'entry_mode', 'mcc')

    @classmethod
    def transform(cls, raw: Dict[str, Any], card: CorporateCard) -> CardTransaction:
        """
        Transform a single provider record.

        Raises:
            MalformedTransactionError: required field missing or unparseable
        """
        if not isinstance(raw, dict):
            raise MalformedTransactionError("Record is not an object", raw_value=raw)

        provider_id = cls._extract_provider_id(raw)
        merchant_name = _first(raw, 'merchant_name', 'merchant', 'merchantName', 'payee')
        if not merchant_name:
            raise MalformedTransactionError("Missing merchant name", field="merchant_name")

        return CardTransaction(
            tenant_id=card.tenant_id,
            card_id=card.id,
            provider_transaction_id=provider_id,
            amount=cls._parse_amount(raw),
            currency=str(_first(raw, 'currency', 'currency_code') or card.currency).upper(),
            merchant_name=str(merchant_name).strip(),
            merchant_category=str(_first(raw, 'merchant_category', 'category', 'mcc_description') or "").upper(),
            transaction_date=cls._parse_timestamp(
                _first(raw, 'transaction_date', 'date', 'transactionDate', 'authorized_at'),
                field="transaction_date",
                required=True
            ),
            posting_date=cls._parse_timestamp(
                _first(raw, 'posting_date', 'posted_at', 'postingDate'),
                field="posting_date"
            ),
            description=str(_first(raw, 'description', 'memo') or ""),
            status=cls._map_enum(raw, ('status', 'state'), cls.STATUS_MAPPING, TransactionStatus.POSTED),
            kind=cls._map_enum(raw, ('kind', 'type', 'transaction_type'), cls.KIND_MAPPING, TransactionKind.PURCHASE),
            authorization_code=cls._safe_string(_first(raw, 'authorization_code', 'auth_code')),
            location=cls._parse_location(raw),
            metadata=cls._extract_metadata(raw)
        )

    @classmethod
    def transform_batch(
        cls,
        records: List[Dict[str, Any]],
        card: CorporateCard
    ) -> Tuple[List[CardTransaction], List[ImportIssue]]:
        """
        Transform a batch of provider records.

        Malformed records become ImportIssues; the rest of the batch continues.
        """
        transactions = []
        issues = []
        for record in records:
            try:
                transactions.append(cls.transform(record, card))
            except MalformedTransactionError as e:
                provider_id = None
                if isinstance(record, dict):
                    provider_id = cls._safe_string(_first(record, 'id', 'transaction_id', 'provider_transaction_id'))
                logger.warning(f"Skipping feed record {provider_id}: {e.message} (field={e.field})")
                issues.append(ImportIssue(provider_transaction_id=provider_id, error=e.message, field=e.field))
        return transactions, issues

    @classmethod
    def _extract_provider_id(cls, payload: Dict[str, Any]) -> str:
        provider_id = _first(payload, 'provider_transaction_id', 'transaction_id', 'id', 'external_id')
        if not provider_id:
            raise MalformedTransactionError("Missing provider transaction ID", field="id")
        return str(provider_id)

    @classmethod
    def _parse_amount(cls, payload: Dict[str, Any]) -> Decimal:
        amount_value = _first(payload, 'amount', 'value', 'total')
        if amount_value is None:
            raise MalformedTransactionError("Missing amount", field="amount")
        if isinstance(amount_value, bool):
            raise MalformedTransactionError(f"Invalid amount: {amount_value}", field="amount", raw_value=amount_value)

        try:
            amount = Decimal(str(amount_value).strip())
        except (InvalidOperation, ValueError):
            raise MalformedTransactionError(f"Invalid amount: {amount_value}", field="amount", raw_value=amount_value)

        if not amount.is_finite():
            raise MalformedTransactionError(f"Invalid amount: {amount_value}", field="amount", raw_value=amount_value)
        return amount

    @classmethod
    def _parse_timestamp(cls, value: Any, field: str, required: bool = False) -> Optional[datetime]:
        """
        Parse ISO-8601 or dd/mm/yyyy timestamps.

        Naive values are tagged UTC without shifting the wall-clock hour.
        """
        if value is None:
            if required:
                raise MalformedTransactionError(f"Missing {field}", field=field)
            return None

        parsed = None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, str):
            text_value = value.strip()
            if text_value.endswith('Z'):
                text_value = text_value[:-1] + '+00:00'
            try:
                parsed = datetime.fromisoformat(text_value)
            except ValueError:
                for fmt in cls.DATETIME_FORMATS:
                    try:
                        parsed = datetime.strptime(text_value, fmt)
                        break
                    except ValueError:
                        continue

        if parsed is None:
            raise MalformedTransactionError(f"Invalid {field}: {value}", field=field, raw_value=value)

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @classmethod
    def _map_enum(cls, payload: Dict[str, Any], keys: Tuple[str, ...], mapping: Dict[str, Any], default: Any) -> Any:
        raw_value = _first(payload, *keys)
        if raw_value is None:
            return default
        mapped = mapping.get(str(raw_value).lower().strip())
        if mapped is None:
            raise MalformedTransactionError(f"Unknown value for {keys[0]}: {raw_value}", field=keys[0], raw_value=raw_value)
        return mapped

    @classmethod
    def _parse_location(cls, payload: Dict[str, Any]) -> Optional[TransactionLocation]:
        location = payload.get('location')
        if isinstance(location, dict):
            country = _first(location, 'country', 'country_code')
            if not country:
                return None
            return TransactionLocation(
                country=str(country).upper(),
                city=cls._safe_string(location.get('city')),
                address=cls._safe_string(location.get('address')),
                latitude=cls._safe_float(_first(location, 'latitude', 'lat')),
                longitude=cls._safe_float(_first(location, 'longitude', 'lon', 'lng'))
            )

        country = _first(payload, 'country', 'merchant_country')
        if country:
            return TransactionLocation(
                country=str(country).upper(),
                city=cls._safe_string(_first(payload, 'city', 'merchant_city'))
            )
        return None

    @classmethod
    def _extract_metadata(cls, payload: Dict[str, Any]) -> Dict[str, Any]:
        raw_metadata = payload.get('metadata')
        metadata = dict(raw_metadata) if isinstance(raw_metadata, dict) else {}
        for key in cls.METADATA_KEYS:
            if key in payload and key not in metadata:
                metadata[key] = payload[key]
        return metadata

    @staticmethod
    def _safe_string(value: Any) -> Optional[str]:
        if value is None:
            return None
        text_value = str(value).strip()
        return text_value or None

    @staticmethod
    def _safe_float(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
