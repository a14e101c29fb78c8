"""
Tests for the commit coordinator
"""

import uuid

from mock import patch
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from api.assets.compensation import CompensationManager
from api.assets.models import Existing, Pending, PendingFile
from api.assets.uploads import UploadCoordinator, UploadLimits
from api.auth.models import User
from api.records.commit import (
    CommitCoordinator,
    CommitRequest,
    CommitState,
)
from api.records.models import Record, RecordKind
from api.records.store import RecordStore, RecordStoreUnavailable
from core.exceptions import (
    AuthError,
    PersistError,
    RecordNotFound,
    UploadError,
    ValidationError,
)


class FailingRecordStore(RecordStore):
    """Record store whose writes are refused"""

    def insert(self, record):
        raise RecordStoreUnavailable("Record insert failed: database unavailable")

    def update(self, record_id, patch, touch=True):
        raise RecordStoreUnavailable("Record update failed: database unavailable")


class RecordingCompensation(CompensationManager):
    """Compensation manager that remembers every batch it was asked to delete"""

    def __init__(self, store):
        super().__init__(store)
        self.calls = []

    def delete(self, refs):
        self.calls.append(list(refs))
        return super().delete(refs)


def png(name: str) -> Pending:
    return Pending(PendingFile(filename=name, content_type="image/png", data=name.encode()))


def make_coordinator(asset_store, records, limits=None):
    compensation = RecordingCompensation(asset_store)
    uploader = UploadCoordinator(asset_store, limits, compensation)
    return CommitCoordinator(records, uploader, compensation)


def seed_record(
    session: Session,
    mock_s3_client,
    owner: User,
    kind: RecordKind = RecordKind.DISPLAY,
    keys: tuple[str, ...] = ("displays/a.png", "displays/b.png", "displays/c.png"),
    section: str | None = None,
) -> Record:
    record = Record(
        kind=kind,
        title="Existing",
        section=section,
        asset_refs=[mock_s3_client.add_object(key) for key in keys],
        owner_id=owner.id,
        position_index=1,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


class TestCreate:

    def test_create_uploads_then_inserts(self, session, asset_store, mock_s3_client, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        request = CommitRequest(
            kind=RecordKind.DISPLAY,
            title="  Spring show  ",
            items=[png("1.png"), png("2.png"), png("3.png")],
        )

        result = coordinator.commit(request, test_user)

        assert result.success
        assert result.created
        assert result.message == "Display created successfully"
        assert result.states == [
            CommitState.VALIDATING,
            CommitState.UPLOADING,
            CommitState.RECONCILING,
            CommitState.PERSISTING,
            CommitState.DONE,
        ]
        assert len(result.urls) == 3
        assert len(mock_s3_client.keys()) == 3

        record = session.get(Record, result.record_id)
        assert record.title == "Spring show"
        assert record.asset_refs == result.urls
        assert record.owner_id == test_user.id
        assert record.position_index == 1

    def test_new_records_append_to_the_order(self, session, asset_store, mock_s3_client, test_user):
        seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="Next", items=[png("n.png")]),
            test_user,
        )

        assert session.get(Record, result.record_id).position_index == 2

    def test_unauthenticated_commit_touches_nothing(self, session, asset_store, mock_s3_client):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="T", items=[png("1.png")]),
            None,
        )

        assert not result.success
        assert isinstance(result.error, AuthError)
        assert result.error.status_code == 401
        assert result.states == [CommitState.VALIDATING, CommitState.FAILED]
        assert mock_s3_client.put_calls == []
        assert session.exec(select(Record)).all() == []

    def test_missing_title(self, session, asset_store, mock_s3_client, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.PUBLICATION, title="   ", items=[png("1.png")]),
            test_user,
        )
        assert isinstance(result.error, ValidationError)
        assert result.message == "Title is required"
        assert mock_s3_client.put_calls == []

    def test_title_too_long(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="x" * 201, items=[png("1.png")]),
            test_user,
        )
        assert result.message == "Title must be at most 200 characters"

    def test_title_at_the_limit_is_accepted(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="x" * 200, items=[png("1.png")]),
            test_user,
        )
        assert result.success

    def test_title_limit_is_configurable(self, session, asset_store, test_user):
        compensation = RecordingCompensation(asset_store)
        coordinator = CommitCoordinator(
            RecordStore(session),
            UploadCoordinator(asset_store, compensation=compensation),
            compensation,
            title_max_length=300,
        )
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="x" * 250, items=[png("1.png")]),
            test_user,
        )
        assert result.success
        assert session.get(Record, result.record_id).title == "x" * 250

    def test_at_least_one_image(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="Empty"), test_user
        )
        assert isinstance(result.error, ValidationError)
        assert result.message == "At least one image is required"

    def test_invalid_file_means_zero_uploads(self, session, asset_store, mock_s3_client, test_user):
        coordinator = make_coordinator(
            asset_store, RecordStore(session), UploadLimits(max_file_size=4)
        )
        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="T",
                items=[png("a.png"), png("much-too-large.png")],
            ),
            test_user,
        )
        assert isinstance(result.error, ValidationError)
        assert mock_s3_client.put_calls == []
        assert session.exec(select(Record)).all() == []

    def test_portrait_holds_a_single_image(self, session, asset_store, mock_s3_client, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.PORTRAIT, items=[png("1.png"), png("2.png")]),
            test_user,
        )
        assert isinstance(result.error, ValidationError)
        assert mock_s3_client.put_calls == []

    def test_portrait_title_is_optional(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.PORTRAIT, items=[png("me.png")]), test_user
        )
        assert result.success
        assert session.get(Record, result.record_id).title is None


class TestUploadFailure:

    def test_partial_batch_is_compensated_and_not_persisted(
        self, session, asset_store, mock_s3_client, test_user
    ):
        mock_s3_client.fail_upload_of(b"2.png")
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="T",
                items=[png("1.png"), png("2.png"), png("3.png")],
            ),
            test_user,
        )

        assert not result.success
        assert isinstance(result.error, UploadError)
        assert result.error.status_code == 502
        assert result.message.startswith("Failed to upload some images: 2.png")
        assert result.states[-2:] == [CommitState.COMPENSATING_UPLOADS, CommitState.FAILED]
        assert CommitState.PERSISTING not in result.states
        assert mock_s3_client.keys() == set()
        assert len(coordinator.compensation.calls[0]) == 2
        assert session.exec(select(Record)).all() == []

    def test_update_keeps_previous_state(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        before = list(record.asset_refs)
        mock_s3_client.fail_upload_of(b"e.png")
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Changed",
                record_id=record.id,
                items=[Existing(before[0]), Existing(before[2]), png("d.png"), png("e.png")],
            ),
            test_user,
        )

        assert not result.success
        session.refresh(record)
        assert record.asset_refs == before
        assert record.title == "Existing"
        assert mock_s3_client.keys() == {"displays/a.png", "displays/b.png", "displays/c.png"}


class TestPersistFailure:

    def test_only_new_uploads_are_removed(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        before = list(record.asset_refs)
        coordinator = make_coordinator(asset_store, FailingRecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Changed",
                record_id=record.id,
                items=[Existing(before[0]), png("d.png"), png("e.png")],
            ),
            test_user,
        )

        assert isinstance(result.error, PersistError)
        assert result.states[-3:] == [
            CommitState.PERSISTING,
            CommitState.COMPENSATING_NEW,
            CommitState.FAILED,
        ]
        # Exactly the two fresh uploads were deleted; dropped references survive
        assert len(coordinator.compensation.calls) == 1
        assert len(coordinator.compensation.calls[0]) == 2
        assert all(ref not in before for ref in coordinator.compensation.calls[0])
        assert mock_s3_client.keys() == {"displays/a.png", "displays/b.png", "displays/c.png"}
        session.refresh(record)
        assert record.asset_refs == before

    def test_unexpected_error_is_reported(self, session, asset_store, mock_s3_client, test_user):
        class BrokenStore(RecordStore):
            def insert(self, record):
                raise RuntimeError("driver crashed")

        coordinator = make_coordinator(asset_store, BrokenStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.DISPLAY, title="T", items=[png("1.png")]),
            test_user,
        )

        assert isinstance(result.error, PersistError)
        assert result.message == "An unexpected error occurred. Please try again."
        assert mock_s3_client.keys() == set()


class TestReloadAfterCommit:
    """A committed write stays committed even if reading it back fails"""

    @staticmethod
    def refuse_record_reload(session):
        real_refresh = session.refresh

        def refresh(instance, *args, **kwargs):
            if isinstance(instance, Record):
                raise OperationalError("SELECT records", {}, Exception("connection dropped"))
            return real_refresh(instance, *args, **kwargs)

        return patch.object(session, "refresh", side_effect=refresh)

    def test_create_keeps_its_uploads(self, session, asset_store, mock_s3_client, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))

        with self.refuse_record_reload(session):
            result = coordinator.commit(
                CommitRequest(kind=RecordKind.DISPLAY, title="T", items=[png("1.png")]),
                test_user,
            )

        assert result.success
        assert result.state == CommitState.DONE
        record = session.get(Record, result.record_id)
        assert record.asset_refs == result.urls
        for ref in record.asset_refs:
            assert asset_store.asset_id_for(ref) in mock_s3_client.keys()
        assert coordinator.compensation.calls == [[]]

    def test_update_keeps_its_uploads(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        a, b, c = record.asset_refs
        coordinator = make_coordinator(asset_store, RecordStore(session))

        with self.refuse_record_reload(session):
            result = coordinator.commit(
                CommitRequest(
                    kind=RecordKind.DISPLAY,
                    title="Existing",
                    record_id=record.id,
                    items=[Existing(a), png("d.png")],
                ),
                test_user,
            )

        assert result.success
        assert result.removed == [b, c]
        session.refresh(record)
        assert record.asset_refs == result.urls
        for ref in record.asset_refs:
            assert asset_store.asset_id_for(ref) in mock_s3_client.keys()


class TestUpdate:

    def test_drop_and_add(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        a, b, c = record.asset_refs
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Existing",
                record_id=record.id,
                items=[Existing(a), Existing(c), png("d.png")],
            ),
            test_user,
        )

        assert result.success
        assert not result.created
        assert result.message == "Display updated successfully"
        assert result.urls[:2] == [a, c]
        assert len(result.urls) == 3
        assert result.removed == [b]
        # The dropped reference is cleaned up once, after the write
        assert coordinator.compensation.calls == [[b]]
        assert "displays/b.png" not in mock_s3_client.keys()
        session.refresh(record)
        assert record.asset_refs == result.urls

    def test_dropped_reference_is_removed_after_the_write(
        self, session, asset_store, mock_s3_client, test_user
    ):
        record = seed_record(session, mock_s3_client, test_user)
        a, b, c = record.asset_refs
        persisted_at_cleanup = []

        class CheckingCompensation(RecordingCompensation):
            def delete(self, refs):
                if refs:
                    persisted_at_cleanup.append(list(session.get(Record, record.id).asset_refs))
                return super().delete(refs)

        compensation = CheckingCompensation(asset_store)
        coordinator = CommitCoordinator(
            RecordStore(session),
            UploadCoordinator(asset_store, compensation=compensation),
            compensation,
        )

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Existing",
                record_id=record.id,
                items=[Existing(a), Existing(c), png("d.png")],
            ),
            test_user,
        )

        assert result.success
        assert persisted_at_cleanup == [result.urls]
        assert b not in persisted_at_cleanup[0]

    def test_update_count_is_retained_plus_new(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Existing",
                record_id=record.id,
                items=[Existing(ref) for ref in record.asset_refs] + [png("x.png"), png("y.png")],
            ),
            test_user,
        )

        assert len(result.urls) == 5
        assert result.removed == []
        assert coordinator.compensation.calls == [[]]

    def test_foreign_retained_reference_is_ignored(
        self, session, asset_store, mock_s3_client, test_user
    ):
        record = seed_record(session, mock_s3_client, test_user, keys=("displays/a.png",))
        stranger = mock_s3_client.add_object("displays/someone-else.png")
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Existing",
                record_id=record.id,
                items=[Existing(record.asset_refs[0]), Existing(stranger)],
            ),
            test_user,
        )

        assert result.urls == [record.asset_refs[0]]
        assert stranger not in result.urls

    def test_non_owner_is_refused(self, session, asset_store, mock_s3_client, test_user, other_user):
        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="Mine now",
                record_id=record.id,
                items=[png("x.png")],
            ),
            other_user,
        )

        assert isinstance(result.error, AuthError)
        assert result.error.status_code == 403
        assert result.message == "You are not authorized to update this display"
        assert mock_s3_client.put_calls == []

    def test_unknown_record(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.DISPLAY,
                title="T",
                record_id=uuid.uuid4(),
                items=[png("x.png")],
            ),
            test_user,
        )
        assert isinstance(result.error, RecordNotFound)
        assert result.message == "Display not found"

    def test_kind_mismatch_is_not_found(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.PUBLICATION,
                title="T",
                record_id=record.id,
                items=[png("x.png")],
            ),
            test_user,
        )
        assert isinstance(result.error, RecordNotFound)


class TestCover:

    def test_section_is_required(self, session, asset_store, test_user):
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.commit(
            CommitRequest(kind=RecordKind.COVER, items=[png("c.png")]), test_user
        )
        assert result.message == "Section is required"

    def test_cover_section_cannot_change_by_id(
        self, session, asset_store, mock_s3_client, test_user
    ):
        record = seed_record(
            session,
            mock_s3_client,
            test_user,
            kind=RecordKind.COVER,
            keys=("covers/old.png",),
            section="home",
        )
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(
                kind=RecordKind.COVER,
                record_id=record.id,
                section="about",
                items=[png("new.png")],
            ),
            test_user,
        )

        assert isinstance(result.error, ValidationError)
        assert result.message == "Section of an existing cover cannot be changed"
        assert mock_s3_client.put_calls == []
        session.refresh(record)
        assert record.section == "home"

    def test_cover_upserts_by_section(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(
            session,
            mock_s3_client,
            test_user,
            kind=RecordKind.COVER,
            keys=("covers/old.png",),
            section="home",
        )
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.commit(
            CommitRequest(kind=RecordKind.COVER, section="home", items=[png("new.png")]),
            test_user,
        )

        assert result.success
        assert not result.created
        assert result.record_id == record.id
        assert "covers/old.png" not in mock_s3_client.keys()
        covers = session.exec(select(Record).where(Record.kind == RecordKind.COVER)).all()
        assert len(covers) == 1
        assert covers[0].asset_refs == result.urls


class TestDelete:

    def test_delete_removes_row_then_assets(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        refs = list(record.asset_refs)
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.delete(RecordKind.DISPLAY, record.id, test_user)

        assert result.success
        assert result.message == "Display deleted successfully"
        assert result.removed == refs
        assert session.exec(select(Record)).all() == []
        assert mock_s3_client.keys() == set()

    def test_failed_row_delete_keeps_assets(self, session, asset_store, mock_s3_client, test_user):
        class UndeletableStore(RecordStore):
            def delete(self, record_id):
                raise RecordStoreUnavailable("Record delete failed: database unavailable")

        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, UndeletableStore(session))

        result = coordinator.delete(RecordKind.DISPLAY, record.id, test_user)

        assert isinstance(result.error, PersistError)
        assert coordinator.compensation.calls == []
        assert len(mock_s3_client.keys()) == 3

    def test_delete_requires_owner(self, session, asset_store, mock_s3_client, test_user, other_user):
        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))

        result = coordinator.delete(RecordKind.DISPLAY, record.id, other_user)

        assert result.message == "You are not authorized to delete this display"
        assert session.get(Record, record.id) is not None

    def test_delete_requires_principal(self, session, asset_store, mock_s3_client, test_user):
        record = seed_record(session, mock_s3_client, test_user)
        coordinator = make_coordinator(asset_store, RecordStore(session))
        result = coordinator.delete(RecordKind.DISPLAY, record.id, None)
        assert result.error.status_code == 401
