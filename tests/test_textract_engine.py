"""Tests for the cloud expense engine."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from receipt_ledger.config import TextractConfig
from receipt_ledger.engines.base import EngineError, EngineErrorKind
from receipt_ledger.engines.textract import TextractEngine, map_expense_document
from receipt_ledger.schemas.receipt import EngineId


def client_error(code: str, status: int = 400, operation: str = "AnalyzeExpense") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


@pytest.fixture
def config():
    return TextractConfig(region="us-east-1", bucket="staging-bucket", staging_prefix="tmp/")


@pytest.fixture
def s3():
    return MagicMock()


@pytest.fixture
def textract(sample_textract_response):
    client = MagicMock()
    client.analyze_expense.return_value = sample_textract_response
    return client


@pytest.fixture
def engine(config, s3, textract):
    return TextractEngine(config, s3_client=s3, textract_client=textract)


class TestMapExpenseDocument:
    """Tests for response mapping."""

    def test_summary_fields(self, sample_textract_response):
        result = map_expense_document(sample_textract_response["ExpenseDocuments"][0])

        assert result.vendor == "Corner Cafe"
        assert result.date == "03/14/2024"
        assert result.subtotal == "$12.00"
        assert result.tax == "$0.96"
        assert result.total == "$12.96"
        assert result.confidence == pytest.approx(94.0)

    def test_line_items(self, sample_textract_response):
        result = map_expense_document(sample_textract_response["ExpenseDocuments"][0])

        assert result.items == [
            {"name": "Latte", "price": "$4.50", "quantity": "1"},
            {"name": "Bagel", "price": "$7.50", "quantity": None},
        ]

    def test_amount_paid_fallback_for_total(self):
        document = {
            "SummaryFields": [
                {"Type": {"Text": "AMOUNT_PAID"}, "ValueDetection": {"Text": "5.00"}},
            ]
        }

        result = map_expense_document(document)

        assert result.total == "5.00"
        assert result.confidence is None

    def test_empty_document(self):
        result = map_expense_document({})

        assert result.vendor is None
        assert result.items == []


class TestTextractEngine:
    """Tests for TextractEngine with mocked AWS clients."""

    def test_stages_analyzes_and_cleans_up(self, engine, s3, textract):
        result = engine.extract(b"jpegdata", "image/jpeg", "lunch.JPG")

        put_kwargs = s3.put_object.call_args.kwargs
        assert put_kwargs["Bucket"] == "staging-bucket"
        assert put_kwargs["Key"].startswith("tmp/")
        assert put_kwargs["Key"].endswith(".jpg")
        assert put_kwargs["Body"] == b"jpegdata"

        textract.analyze_expense.assert_called_once_with(
            Document={"S3Object": {"Bucket": "staging-bucket", "Name": put_kwargs["Key"]}}
        )
        s3.delete_object.assert_called_once_with(Bucket="staging-bucket", Key=put_kwargs["Key"])
        assert result.total == "$12.96"
        assert result.raw_matches["document_count"] == 1

    def test_not_configured(self, s3, textract):
        engine = TextractEngine(TextractConfig(bucket=None), s3_client=s3, textract_client=textract)

        with pytest.raises(EngineError, match="not configured") as exc_info:
            engine.extract(b"data", "image/png")

        assert exc_info.value.kind is EngineErrorKind.PERMANENT
        s3.put_object.assert_not_called()

    def test_unsupported_mime_type(self, engine):
        with pytest.raises(EngineError, match="does not accept"):
            engine.extract(b"data", "text/plain")

    @pytest.mark.parametrize("mime_type", ["image/gif", "image/bmp"])
    def test_formats_rejected_before_staging(self, engine, s3, textract, mime_type):
        with pytest.raises(EngineError) as exc_info:
            engine.extract(b"GIF89a", mime_type)

        assert exc_info.value.is_transient is False
        s3.put_object.assert_not_called()
        textract.analyze_expense.assert_not_called()

    def test_throttling_is_transient_and_staged_object_deleted(self, engine, s3, textract):
        textract.analyze_expense.side_effect = client_error("ThrottlingException")

        with pytest.raises(EngineError) as exc_info:
            engine.extract(b"data", "image/png")

        assert exc_info.value.is_transient is True
        assert exc_info.value.engine_id is EngineId.TEXTRACT
        s3.delete_object.assert_called_once()

    def test_server_error_is_transient(self, engine, textract):
        textract.analyze_expense.side_effect = client_error("SomethingOdd", status=503)

        with pytest.raises(EngineError) as exc_info:
            engine.extract(b"data", "image/png")

        assert exc_info.value.is_transient is True

    def test_bad_document_is_permanent(self, engine, textract):
        textract.analyze_expense.side_effect = client_error("UnsupportedDocumentException")

        with pytest.raises(EngineError, match="UnsupportedDocumentException") as exc_info:
            engine.extract(b"data", "image/png")

        assert exc_info.value.kind is EngineErrorKind.PERMANENT

    def test_upload_failure_skips_cleanup(self, engine, s3, textract):
        s3.put_object.side_effect = client_error("AccessDenied", status=403, operation="PutObject")

        with pytest.raises(EngineError):
            engine.extract(b"data", "image/png")

        textract.analyze_expense.assert_not_called()
        s3.delete_object.assert_not_called()

    def test_connection_error_is_transient(self, engine, textract):
        textract.analyze_expense.side_effect = EndpointConnectionError(
            endpoint_url="https://textract.us-east-1.amazonaws.com"
        )

        with pytest.raises(EngineError) as exc_info:
            engine.extract(b"data", "image/png")

        assert exc_info.value.is_transient is True

    def test_no_expense_documents(self, engine, textract):
        textract.analyze_expense.return_value = {"ExpenseDocuments": []}

        with pytest.raises(EngineError, match="No expense document"):
            engine.extract(b"data", "application/pdf")

    def test_cleanup_failure_does_not_mask_result(self, engine, s3):
        s3.delete_object.side_effect = client_error("AccessDenied", status=403)

        result = engine.extract(b"data", "image/png")

        assert result.vendor == "Corner Cafe"
