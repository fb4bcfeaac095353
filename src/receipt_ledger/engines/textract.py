"""
Cloud expense analysis engine (AWS Textract AnalyzeExpense).

The receipt is staged in an S3 bucket, analyzed from there and the staged
object is always deleted afterwards. Only the summary fields and line
items needed for a receipt are mapped; everything else in the response is
ignored.
"""

import logging
import uuid
from pathlib import PurePath
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ReadTimeoutError
from botocore.exceptions import ConnectionError as BotoConnectionError

from ..config import TextractConfig
from ..schemas.receipt import EngineId, RawEngineResult
from .base import EngineAdapter, EngineError

logger = logging.getLogger(__name__)

# Document formats accepted by AnalyzeExpense
TEXTRACT_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/tiff", "application/pdf"})

# Summary field types, in order of preference per receipt field
SUMMARY_FIELD_MAP = {
    "vendor": ("VENDOR_NAME", "NAME"),
    "date": ("INVOICE_RECEIPT_DATE",),
    "subtotal": ("SUBTOTAL",),
    "tax": ("TAX",),
    "total": ("TOTAL", "AMOUNT_PAID"),
}

# Error codes worth retrying later
TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "LimitExceededException",
        "InternalServerError",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "SlowDown",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)


def _field_type(expense_field: dict) -> str:
    return (expense_field.get("Type") or {}).get("Text", "").upper()


def _field_value(expense_field: dict) -> tuple[Optional[str], Optional[float]]:
    detection = expense_field.get("ValueDetection") or {}
    text = detection.get("Text")
    if text is not None:
        text = text.strip() or None
    return text, detection.get("Confidence")


def map_expense_document(document: dict) -> RawEngineResult:
    """Map one ExpenseDocument to a RawEngineResult.

    Confidence is the mean confidence of the summary fields that were
    recovered; None when no mapped field is present.
    """
    by_type: dict[str, tuple[Optional[str], Optional[float]]] = {}
    for expense_field in document.get("SummaryFields", []):
        field_type = _field_type(expense_field)
        text, conf = _field_value(expense_field)
        # First occurrence of a type wins
        if text and field_type not in by_type:
            by_type[field_type] = (text, conf)

    result = RawEngineResult()
    confidences: list[float] = []
    for attr, field_types in SUMMARY_FIELD_MAP.items():
        for field_type in field_types:
            if field_type in by_type:
                text, conf = by_type[field_type]
                setattr(result, attr, text)
                if conf is not None:
                    confidences.append(float(conf))
                result.raw_matches[attr] = field_type
                break

    for group in document.get("LineItemGroups", []):
        for line_item in group.get("LineItems", []):
            item: dict[str, Any] = {"name": None, "price": None, "quantity": None}
            for expense_field in line_item.get("LineItemExpenseFields", []):
                field_type = _field_type(expense_field)
                text, _ = _field_value(expense_field)
                if field_type == "ITEM":
                    item["name"] = text
                elif field_type == "PRICE":
                    item["price"] = text
                elif field_type == "QUANTITY":
                    item["quantity"] = text
            if item["name"]:
                result.items.append(item)

    if confidences:
        result.confidence = sum(confidences) / len(confidences)

    return result


class TextractEngine(EngineAdapter):
    """Cloud receipt analysis via AWS Textract."""

    def __init__(
        self,
        config: Optional[TextractConfig] = None,
        s3_client: Any = None,
        textract_client: Any = None,
    ):
        self.config = config or TextractConfig()
        self._s3 = s3_client
        self._textract = textract_client

    @property
    def engine_id(self) -> EngineId:
        return EngineId.TEXTRACT

    @property
    def display_name(self) -> str:
        return "AWS Textract"

    def is_configured(self) -> bool:
        return self.config.is_configured()

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"region_name": self.config.region}
        if self.config.access_key_id and self.config.secret_access_key:
            kwargs["aws_access_key_id"] = self.config.access_key_id
            kwargs["aws_secret_access_key"] = self.config.secret_access_key
        return kwargs

    @property
    def s3(self) -> Any:
        if self._s3 is None:
            self._s3 = boto3.client("s3", **self._client_kwargs())
        return self._s3

    @property
    def textract(self) -> Any:
        if self._textract is None:
            self._textract = boto3.client("textract", **self._client_kwargs())
        return self._textract

    def _staging_key(self, hint: Optional[str]) -> str:
        suffix = PurePath(hint).suffix.lower() if hint else ""
        return f"{self.config.staging_prefix}{uuid.uuid4().hex}{suffix}"

    def extract(
        self,
        data: bytes,
        mime_type: str,
        hint: Optional[str] = None,
    ) -> RawEngineResult:
        if not self.is_configured():
            raise EngineError.permanent(
                "Textract is not configured (no staging bucket)", self.engine_id
            )
        if mime_type not in TEXTRACT_MIME_TYPES:
            raise EngineError.permanent(
                f"Textract does not accept {mime_type}", self.engine_id
            )

        bucket = self.config.bucket
        key = self._staging_key(hint)
        staged = False

        try:
            self.s3.put_object(Bucket=bucket, Key=key, Body=data, ContentType=mime_type)
            staged = True
            logger.debug("Staged receipt at s3://%s/%s", bucket, key)

            response = self.textract.analyze_expense(
                Document={"S3Object": {"Bucket": bucket, "Name": key}}
            )
        except (ClientError, BotoCoreError) as e:
            raise self._map_error(e) from e
        finally:
            if staged:
                self._delete_staged(bucket, key)

        documents = response.get("ExpenseDocuments") or []
        if not documents:
            raise EngineError.permanent("No expense document found in response", self.engine_id)

        result = map_expense_document(documents[0])
        result.raw_matches["document_count"] = len(documents)
        return result

    def _delete_staged(self, bucket: str, key: str) -> None:
        try:
            self.s3.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.warning("Failed to delete staged receipt s3://%s/%s: %s", bucket, key, e)

    def _map_error(self, error: Exception) -> EngineError:
        """Classify an AWS error as transient or permanent."""
        if isinstance(error, ClientError):
            err = error.response.get("Error", {})
            code = err.get("Code", "")
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            message = err.get("Message") or str(error)
            if code in TRANSIENT_ERROR_CODES or status >= 500:
                return EngineError.transient(f"{code}: {message}", self.engine_id)
            return EngineError.permanent(f"{code}: {message}", self.engine_id)

        if isinstance(error, (BotoConnectionError, ReadTimeoutError)):
            return EngineError.transient(f"Connection failed: {error}", self.engine_id)

        return EngineError.permanent(str(error), self.engine_id)
