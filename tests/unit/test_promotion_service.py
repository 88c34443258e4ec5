"""
Unit tests for PromotionService.

Run: pytest tests/unit/test_promotion_service.py -v
"""

import threading

import pytest

from services.promotion_service import PromotionService
from exceptions import ImportNotFoundError
from tests.factories import seed_drafts


@pytest.fixture
def ready_drafts(bulk_import_service, draft_editor, validation_service, import_id):
    """Three validated drafts: a, b, c."""
    drafts = seed_drafts(bulk_import_service, import_id, ["a.jpg", "b.jpg", "c.jpg"])
    for draft in drafts:
        draft_editor.update_draft(draft.id, {"price": 1000})
    validation_service.validate_session(import_id)
    return drafts


def _permanent_objects(mock_supabase, store_id) -> list[str]:
    prefix = f"products/{store_id}/"
    return [p for p in mock_supabase.storage.objects.get("products", {}) if p.startswith(prefix)]


class TestPromotionServicePromoteSession:
    """Tests for PromotionService.promote_session()"""

    def test_promotes_every_ready_draft(
        self, promotion_service, bulk_import_service, import_id, ready_drafts, mock_supabase
    ):
        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        assert result.created_count == 3
        assert result.failed_count == 0
        assert [c.draft_id for c in result.created] == [d.id for d in ready_drafts]

        for created in result.created:
            draft = bulk_import_service.get_draft(created.draft_id)
            assert draft.status == "created"
            assert draft.created_product_id == created.product_id

        assert len(mock_supabase.rows("products")) == 3

    def test_product_fields(
        self, promotion_service, import_id, store_id, ready_drafts, mock_supabase
    ):
        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        product = next(
            p for p in mock_supabase.rows("products")
            if p["id"] == result.created[0].product_id
        )
        assert product["store_id"] == store_id
        assert product["name"] == "A"
        assert product["price"] == 1000
        assert product["stock_quantity"] == 0
        assert product["active"] is True
        assert product["sku"] == f"AUTO-{ready_drafts[0].id[:8].upper()}"

    def test_images_are_copied_to_permanent_storage(
        self, promotion_service, import_id, store_id, ready_drafts, mock_supabase
    ):
        result = promotion_service.promote_session(import_id)

        product_id = result.created[0].product_id
        images = [i for i in mock_supabase.rows("product_images") if i["product_id"] == product_id]
        assert len(images) == 1
        assert images[0]["is_primary"] is True
        assert images[0]["storage_path"].startswith(f"products/{store_id}/")
        assert images[0]["storage_path"].endswith("-a.jpg")
        assert images[0]["url"].endswith(images[0]["storage_path"])
        assert len(_permanent_objects(mock_supabase, store_id)) == 3

    def test_failing_draft_does_not_stop_siblings(
        self, promotion_service, bulk_import_service, import_id, ready_drafts, mock_supabase
    ):
        # Arrange
        mock_supabase.storage.fail("copy", lambda path: path.endswith("-b.jpg"))

        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        assert [c.draft_id for c in result.created] == [ready_drafts[0].id, ready_drafts[2].id]
        assert [f.draft_id for f in result.failed] == [ready_drafts[1].id]
        assert "simulated copy failure" in result.failed[0].error

        failed = bulk_import_service.get_draft(ready_drafts[1].id)
        assert failed.status == "ready"
        assert failed.created_product_id is None
        assert len(mock_supabase.rows("products")) == 2

    def test_failed_copy_rolls_back_copied_blobs(
        self, promotion_service, bulk_import_service, import_id, store_id, mock_supabase
    ):
        # Arrange
        seed_drafts(bulk_import_service, import_id, ["bolsa-1.jpg", "bolsa-2.jpg"])
        mock_supabase.table("draft_products").update({"status": "ready"}).eq(
            "import_id", import_id
        ).execute()
        mock_supabase.storage.fail("copy", lambda path: path.endswith("-bolsa-2.jpg"))

        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        assert result.failed_count == 1
        assert _permanent_objects(mock_supabase, store_id) == []
        assert mock_supabase.rows("products") == []

    def test_product_insert_failure_rolls_back(
        self, promotion_service, import_id, store_id, ready_drafts, mock_supabase
    ):
        # Arrange
        mock_supabase.fail("products", "insert", lambda payload: payload["name"] == "B")

        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        assert result.created_count == 2
        assert [f.draft_id for f in result.failed] == [ready_drafts[1].id]
        assert len(_permanent_objects(mock_supabase, store_id)) == 2

    def test_creation_log_records_each_outcome(
        self, promotion_service, import_id, ready_drafts, mock_supabase
    ):
        mock_supabase.storage.fail("copy", lambda path: path.endswith("-c.jpg"))

        promotion_service.promote_session(import_id)

        log = mock_supabase.rows("bulk_import_products")
        assert len(log) == 3
        by_draft = {row["draft_product_id"]: row for row in log}
        assert by_draft[ready_drafts[0].id]["created_successfully"] is True
        assert by_draft[ready_drafts[0].id]["product_id"] is not None
        assert by_draft[ready_drafts[2].id]["created_successfully"] is False
        assert by_draft[ready_drafts[2].id]["product_id"] is None
        assert by_draft[ready_drafts[2].id]["error_message"]

    def test_only_ready_drafts_are_promoted(
        self, promotion_service, bulk_import_service, import_id, ready_drafts, mock_supabase
    ):
        mock_supabase.table("draft_products").update({"status": "draft"}).eq(
            "id", ready_drafts[0].id
        ).execute()

        result = promotion_service.promote_session(import_id)

        assert result.created_count == 2
        assert bulk_import_service.get_draft(ready_drafts[0].id).status == "draft"

    def test_import_is_completed_with_cumulative_total(
        self, promotion_service, bulk_import_service, draft_editor, validation_service,
        import_id, ready_drafts
    ):
        # Arrange
        promotion_service.promote_session(import_id)
        later = seed_drafts(bulk_import_service, import_id, ["d.jpg"])[0]
        draft_editor.update_draft(later.id, {"price": 200})
        validation_service.validate_session(import_id)

        # Act
        result = promotion_service.promote_session(import_id)

        # Assert
        assert result.created_count == 1
        session = bulk_import_service.get_import(import_id)
        assert session.status == "completed"
        assert session.total_products_created == 4
        assert session.completed_at is not None

    def test_no_ready_drafts(self, promotion_service, bulk_import_service, import_id):
        seed_drafts(bulk_import_service, import_id, ["a.jpg"])

        result = promotion_service.promote_session(import_id)

        assert result.created == []
        assert result.failed == []
        assert bulk_import_service.get_import(import_id).total_products_created == 0

    def test_unknown_import(self, promotion_service):
        with pytest.raises(ImportNotFoundError):
            promotion_service.promote_session("missing")

    def test_timed_out_draft_is_reported_failed(
        self, mock_supabase, storage_service, bulk_import_service, import_id, store_id, ready_drafts
    ):
        # Arrange
        release = threading.Event()
        rolled_back = threading.Event()
        original_copy = storage_service.copy
        original_delete_many = storage_service.delete_many

        def slow_copy(src, dst):
            if src.endswith("-b.jpg"):
                release.wait(5)
            original_copy(src, dst)

        def delete_many(paths):
            deleted = original_delete_many(paths)
            rolled_back.set()
            return deleted

        storage_service.copy = slow_copy
        storage_service.delete_many = delete_many
        service = PromotionService(
            mock_supabase,
            storage_service,
            bulk_import_service,
            max_workers=3,
            timeout_seconds=0.2,
        )

        # Act
        try:
            result = service.promote_session(import_id)
        finally:
            release.set()

        # Assert
        assert [f.draft_id for f in result.failed] == [ready_drafts[1].id]
        assert "timed out" in result.failed[0].error
        assert result.created_count == 2

        # The abandoned worker finishes later and undoes its copy
        assert rolled_back.wait(5)
        late = bulk_import_service.get_draft(ready_drafts[1].id)
        assert late.status == "ready"
        assert late.created_product_id is None
        assert len(mock_supabase.rows("products")) == 2
        assert len(_permanent_objects(mock_supabase, store_id)) == 2

    def test_timeout_during_final_write_reports_real_outcome(
        self, mock_supabase, storage_service, bulk_import_service, import_id, ready_drafts
    ):
        # Arrange
        mock_supabase.delay(
            "draft_products", "update", 0.8,
            lambda payload: payload.get("status") == "created"
        )
        service = PromotionService(
            mock_supabase,
            storage_service,
            bulk_import_service,
            max_workers=3,
            timeout_seconds=0.3,
        )

        # Act
        result = service.promote_session(import_id)

        # Assert
        assert result.created_count == 3
        assert result.failed == []
        for created in result.created:
            draft = bulk_import_service.get_draft(created.draft_id)
            assert draft.status == "created"
            assert draft.created_product_id == created.product_id

        assert len(mock_supabase.rows("products")) == 3
        log = mock_supabase.rows("bulk_import_products")
        assert len(log) == 3
        assert all(row["created_successfully"] for row in log)
        assert bulk_import_service.get_import(import_id).total_products_created == 3

    def test_draft_edited_during_promotion_is_not_created(
        self, mock_supabase, storage_service, bulk_import_service, import_id, store_id, ready_drafts
    ):
        # Arrange
        original_copy = storage_service.copy
        edited = ready_drafts[1].id

        def copy_then_edit(src, dst):
            original_copy(src, dst)
            if src.endswith("-b.jpg"):
                mock_supabase.table("draft_products").update({"status": "draft"}).eq(
                    "id", edited
                ).execute()

        storage_service.copy = copy_then_edit
        service = PromotionService(mock_supabase, storage_service, bulk_import_service, max_workers=1)

        # Act
        result = service.promote_session(import_id)

        # Assert
        assert [f.draft_id for f in result.failed] == [edited]
        assert "no longer ready" in result.failed[0].error

        draft = bulk_import_service.get_draft(edited)
        assert draft.status == "draft"
        assert draft.created_product_id is None
        assert {p["name"] for p in mock_supabase.rows("products")} == {"A", "C"}
        assert len(_permanent_objects(mock_supabase, store_id)) == 2

    def test_concurrent_runs_create_each_product_once(
        self, promotion_service, bulk_import_service, import_id, ready_drafts, mock_supabase
    ):
        # Arrange
        results = []

        def run():
            results.append(promotion_service.promote_session(import_id))

        threads = [threading.Thread(target=run) for _ in range(2)]

        # Act
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        # Assert
        assert sorted(r.created_count for r in results) == [0, 3]
        assert all(r.failed == [] for r in results)
        assert len(mock_supabase.rows("products")) == 3
        assert bulk_import_service.get_import(import_id).total_products_created == 3


class TestPromotionEndToEnd:
    """Upload -> edit -> validate -> promote"""

    def test_full_import_flow(
        self, bulk_import_service, draft_editor, validation_service, promotion_service, import_id
    ):
        # Upload
        drafts = seed_drafts(
            bulk_import_service, import_id,
            ["vestido-azul-1.jpg", "vestido-azul-2.jpg", "camisa.jpg"]
        )
        assert [d.name for d in drafts] == ["Vestido Azul", "Camisa"]

        # Edit
        draft_editor.update_draft(drafts[0].id, {"price": 5000})
        draft_editor.update_draft(drafts[1].id, {"price": 3000})

        # Validate
        report = validation_service.validate_session(import_id)
        assert report.valid is True
        assert {d.status for d in bulk_import_service.list_drafts(import_id)} == {"ready"}

        # Promote
        result = promotion_service.promote_session(import_id)
        assert result.created_count == 2
        assert bulk_import_service.get_import(import_id).total_products_created == 2
