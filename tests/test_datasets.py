import hashlib

import pytest

from conftest import BUYER_DID
from meridian.errors import ErrorCode, GatewayError
from meridian.models.dataset import DatasetFilter, DatasetMetadata
from meridian.services.datasets import DatasetService

CSV = "city,temp\nLagos,31\nOslo,4\n"


def metadata(**overrides):
    values = {
        "name": "Weather",
        "description": "Daily temperatures",
        "category": "climate",
        "file_type": "text/csv",
        "tags": ["weather"],
        "quality_score": 80,
        "suggested_price": "0.5",
    }
    values.update(overrides)
    return DatasetMetadata(**values)


@pytest.fixture
async def datasets(vault, permissions):
    await vault.create_identity()
    return DatasetService(vault, permissions)


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_records_hash_and_size(self, datasets, vault):
        record = await datasets.upload_dataset(CSV, metadata())
        assert record.file_hash == hashlib.sha256(CSV.encode()).hexdigest()
        assert record.file_size == len(CSV.encode())
        assert record.provider_did == vault.get_did()

        stored = await datasets.get_dataset(record.id)
        assert stored == record
        assert await datasets.get_dataset_content(record.id) == CSV.encode()

    @pytest.mark.asyncio
    async def test_binary_content_round_trip(self, datasets, vault):
        raw = bytes(range(256))
        record = await datasets.upload_dataset(raw, metadata(file_type="application/vnd.ms-excel"))
        payload = await vault.read(record.id)
        assert payload["contentEncoding"] == "base64"
        assert await datasets.get_dataset_content(record.id) == raw

    @pytest.mark.asyncio
    async def test_tampered_content_fails_verification(self, datasets, vault, transport):
        record = await datasets.upload_dataset(CSV, metadata())
        stored = transport.records[vault.get_did()][record.id]
        stored.payload["content"] = "city,temp\n"
        with pytest.raises(GatewayError) as exc:
            await datasets.get_dataset_content(record.id)
        assert exc.value.code == ErrorCode.DWN_READ_FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("encoding,content", [
        ("base64", "!!! not base64 !!!"),
        ("base64", 12345),
        (None, 12345),
        (None, ["city"]),
    ])
    async def test_undecodable_content(self, datasets, vault, transport, encoding, content):
        record = await datasets.upload_dataset(CSV, metadata())
        stored = transport.records[vault.get_did()][record.id]
        stored.payload["contentEncoding"] = encoding
        stored.payload["content"] = content
        with pytest.raises(GatewayError) as exc:
            await datasets.get_dataset_content(record.id)
        assert exc.value.code == ErrorCode.DWN_READ_FAILED

    @pytest.mark.asyncio
    async def test_size_limit(self, datasets, monkeypatch):
        monkeypatch.setattr("meridian.services.datasets.MAX_FILE_SIZE", 8)
        with pytest.raises(GatewayError) as exc:
            await datasets.upload_dataset(CSV, metadata())
        assert exc.value.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"name": " "},
        {"category": ""},
        {"file_type": "image/png"},
        {"quality_score": 101},
    ])
    async def test_invalid_metadata(self, datasets, overrides):
        with pytest.raises(GatewayError) as exc:
            await datasets.upload_dataset(CSV, metadata(**overrides))
        assert exc.value.code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_requires_identity(self, vault, permissions):
        service = DatasetService(vault, permissions)
        with pytest.raises(GatewayError) as exc:
            await service.upload_dataset(CSV, metadata())
        assert exc.value.code == ErrorCode.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_get_non_dataset_record(self, datasets, vault):
        record_id = await vault.write({"note": "hi"}, "https://meridian.io/schemas/metadata")
        with pytest.raises(GatewayError) as exc:
            await datasets.get_dataset(record_id)
        assert exc.value.code == ErrorCode.DWN_READ_FAILED


class TestListing:

    @pytest.mark.asyncio
    async def test_filters(self, datasets, vault):
        await datasets.upload_dataset(CSV, metadata())
        await datasets.upload_dataset("{}", metadata(
            name="Prices", category="finance", file_type="application/json",
            tags=["markets"], quality_score=40, suggested_price="3",
        ))
        await vault.write({"note": "not a dataset"}, "https://meridian.io/schemas/metadata")

        assert len(await datasets.list_datasets()) == 2
        climate = await datasets.list_datasets(DatasetFilter(category="climate"))
        assert [d.name for d in climate] == ["Weather"]
        tagged = await datasets.list_datasets(DatasetFilter(tags=["markets", "other"]))
        assert [d.name for d in tagged] == ["Prices"]
        quality = await datasets.list_datasets(DatasetFilter(min_quality_score=50))
        assert [d.name for d in quality] == ["Weather"]
        cheap = await datasets.list_datasets(DatasetFilter(max_price="1"))
        assert [d.name for d in cheap] == ["Weather"]

    @pytest.mark.asyncio
    async def test_delete(self, datasets):
        record = await datasets.upload_dataset(CSV, metadata())
        await datasets.delete_dataset(record.id)
        assert await datasets.list_datasets() == []


class TestAccess:

    @pytest.mark.asyncio
    async def test_grant_check_revoke(self, datasets, clock):
        record = await datasets.upload_dataset(CSV, metadata())
        assert not await datasets.check_access(record.id, BUYER_DID)

        await datasets.grant_dataset_access(record.id, BUYER_DID)
        assert await datasets.check_access(record.id, BUYER_DID)

        clock.advance(seconds=1)
        await datasets.revoke_dataset_access(record.id, BUYER_DID)
        assert not await datasets.check_access(record.id, BUYER_DID)

    @pytest.mark.asyncio
    async def test_temporary_access(self, datasets, clock):
        record = await datasets.upload_dataset(CSV, metadata())
        await datasets.grant_temporary_access(record.id, BUYER_DID, duration_minutes=5)
        clock.advance(minutes=4)
        assert await datasets.check_access(record.id, BUYER_DID)
        clock.advance(minutes=1)
        assert not await datasets.check_access(record.id, BUYER_DID)
