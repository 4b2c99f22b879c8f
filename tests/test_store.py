"""
certledger Attestation Store test suite

Critical invariants tested:
    A content hash maps to at most one slot, set exactly once
    Record status only moves forward
    Rejected operations leave state untouched
"""

import unittest

from certledger.categories import CategoryRegistry
from certledger.errors import (
    AlreadyExists,
    AlreadyRedeemed,
    CategoryNotApproved,
    Expired,
    InvalidDate,
    NotFound,
    StillActive,
    TokenNotExists,
    Unauthorized,
)
from certledger.events import EventLog
from certledger.hashing import category_key, payload_hash
from certledger.records import (
    Record,
    RecordStatus,
    TextPayload,
    VoucherPayload,
    effective_status,
    materialize_expiry,
)
from certledger.roles import AccessControl, Role
from certledger.slots import ABSENT_SLOT, SlotAllocator
from certledger.store import AttestationStore, RedemptionPolicy

ADMIN = "0x" + "a" * 40
ISSUER = "0x" + "b" * 40
OUTSIDER = "0x" + "c" * 40

NOW = 1_700_000_000


def voucher(code="V-1", valid_until=NOW + 100):
    return VoucherPayload(subject="alice", code=code, valid_until=valid_until)


class StoreTestCase(unittest.TestCase):

    policy = RedemptionPolicy.BEFORE_EXPIRY

    def setUp(self):
        self.access = AccessControl()
        self.access.bootstrap(Role.ADMIN, [ADMIN])
        self.access.bootstrap(Role.ISSUER, [ISSUER])
        self.categories = CategoryRegistry(self.access.require)
        self.slots = SlotAllocator()
        self.events = EventLog()
        self.store = AttestationStore(
            self.categories, self.slots, self.events, self.access.require, policy=self.policy
        )
        self.categories.approve(ADMIN, "CERT")

    def names(self):
        return [e.event.name for e in self.events.events()]

    def issue_voucher(self, code="V-1", valid_until=NOW + 100):
        payload = voucher(code, valid_until)
        h = payload_hash(payload)
        self.store.issue(ISSUER, h, "CERT", payload, NOW)
        return h


class TestIssue(StoreTestCase):

    def test_issue_allocates_and_records(self):
        h = payload_hash("payload-A")
        slot = self.store.issue(ISSUER, h, "CERT", "payload-A", NOW)
        self.assertEqual(slot, 1)
        self.assertEqual(self.store.slot_of(h), 1)

        record = self.store.get_record(h, "CERT")
        self.assertEqual(record.status, RecordStatus.ACTIVE)
        self.assertEqual(record.owner_identity, ISSUER)
        self.assertEqual(record.category, category_key("CERT"))
        self.assertEqual(record.created_at, NOW)
        self.assertEqual(record.external_ref, "")
        self.assertIsNone(record.deadline)
        self.assertEqual(self.store.get_issued_at(h, "CERT"), NOW)

        issued = self.events.events(kind="Issued")[0].event
        self.assertEqual(issued.slot_id, 1)
        self.assertEqual(issued.issuer, ISSUER)
        self.assertEqual(issued.content_hash, h)
        self.assertEqual(issued.category, category_key("CERT"))

    def test_non_digest_hash_rejected(self):
        for bad in ("not-a-digest", "SHA256:" + "a" * 64, ["x"], None):
            with self.assertRaises(ValueError):
                self.store.issue(ISSUER, bad, "CERT", "payload-A", NOW)
            with self.assertRaises(ValueError):
                self.store.verify(bad, "CERT", NOW)
        self.assertEqual(self.slots.total_allocated(), 0)
        self.assertEqual(self.names(), [])

    def test_duplicate_hash_rejected_and_slot_stable(self):
        h = payload_hash("payload-A")
        self.store.issue(ISSUER, h, "CERT", "payload-A", NOW)
        with self.assertRaises(AlreadyExists) as ctx:
            self.store.issue(ISSUER, h, "CERT", "payload-B", NOW + 1)
        self.assertEqual(ctx.exception.details["slot_id"], 1)
        self.assertEqual(self.store.slot_of(h), 1)
        self.assertEqual(self.slots.total_allocated(), 1)
        self.assertEqual(self.store.get_record(h, "CERT").payload, TextPayload("payload-A"))

    def test_unapproved_category_checked_before_duplicate(self):
        h = payload_hash("payload-A")
        self.store.issue(ISSUER, h, "CERT", "payload-A", NOW)
        with self.assertRaises(CategoryNotApproved):
            self.store.issue(ISSUER, h, "OTHER", "payload-A", NOW)
        with self.assertRaises(CategoryNotApproved):
            self.store.issue(ISSUER, payload_hash("new"), "OTHER", "new", NOW)

    def test_issue_requires_issuer(self):
        with self.assertRaises(Unauthorized):
            self.store.issue(ADMIN, payload_hash("x"), "CERT", "x", NOW)
        self.assertEqual(self.slots.total_allocated(), 0)
        self.assertEqual(self.names(), [])

    def test_bad_payload_leaves_no_trace(self):
        with self.assertRaises(ValueError):
            self.store.issue(ISSUER, payload_hash("x"), "CERT", {"kind": "voucher", "subject": "a"}, NOW)
        self.assertEqual(self.slots.total_allocated(), 0)
        self.assertEqual(self.store.slot_of(payload_hash("x")), ABSENT_SLOT)

    def test_voucher_deadline_taken_from_payload(self):
        h = self.issue_voucher(valid_until=NOW + 500)
        self.assertEqual(self.store.get_record(h, "CERT").deadline, NOW + 500)


class TestLookup(StoreTestCase):

    def test_unknown_hash(self):
        with self.assertRaises(NotFound):
            self.store.verify(payload_hash("missing"), "CERT", NOW)

    def test_wrong_category_on_known_slot(self):
        h = payload_hash("payload-A")
        self.store.issue(ISSUER, h, "CERT", "payload-A", NOW)
        self.categories.approve(ADMIN, "LEVY")
        with self.assertRaises(TokenNotExists):
            self.store.verify(h, "LEVY", NOW)

    def test_get_record_returns_copy(self):
        h = payload_hash("payload-A")
        self.store.issue(ISSUER, h, "CERT", "payload-A", NOW)
        record = self.store.get_record(h, "CERT")
        record.status = RecordStatus.REDEEMED
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.ACTIVE)


class TestVerify(StoreTestCase):

    def test_valid_emits_event(self):
        h = self.issue_voucher()
        self.store.verify(h, "CERT", NOW + 10)
        validated = self.events.events(kind="Validated")
        self.assertEqual(len(validated), 1)
        self.assertTrue(validated[0].event.is_valid)

    def test_deadline_itself_is_still_valid(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.store.verify(h, "CERT", NOW + 100)

    def test_lazy_expiry_flips_exactly_once(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.assertEqual(self.store.get_status(h, "CERT", NOW + 101), RecordStatus.EXPIRED)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.ACTIVE)

        with self.assertRaises(Expired):
            self.store.verify(h, "CERT", NOW + 101)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.EXPIRED)

        with self.assertRaises(Expired):
            self.store.verify(h, "CERT", NOW + 102)

        invalid = [e for e in self.events.events(kind="Validated") if not e.event.is_valid]
        self.assertEqual(len(invalid), 1)

    def test_text_payload_never_expires(self):
        h = payload_hash("forever")
        self.store.issue(ISSUER, h, "CERT", "forever", NOW)
        self.store.verify(h, "CERT", NOW + 10 ** 9)


class TestRedeemBeforeExpiry(StoreTestCase):

    def test_redeem_active(self):
        h = self.issue_voucher()
        self.assertEqual(self.store.redeem(ISSUER, h, "CERT", NOW + 1), 1)
        record = self.store.get_record(h, "CERT")
        self.assertEqual(record.status, RecordStatus.REDEEMED)
        self.assertEqual(record.redeemed_by, ISSUER)
        self.assertEqual(record.redeemed_at, NOW + 1)
        self.assertEqual(self.events.events(kind="Redeemed")[0].event.redeemed_by, ISSUER)

    def test_redeem_twice(self):
        h = self.issue_voucher()
        self.store.redeem(ISSUER, h, "CERT", NOW + 1)
        with self.assertRaises(AlreadyRedeemed):
            self.store.redeem(ISSUER, h, "CERT", NOW + 2)
        with self.assertRaises(AlreadyRedeemed):
            self.store.verify(h, "CERT", NOW + 2)

    def test_redeem_expired_rejected_but_expiry_committed(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        with self.assertRaises(Expired):
            self.store.redeem(ISSUER, h, "CERT", NOW + 200)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.EXPIRED)
        self.assertEqual(self.events.events(kind="Redeemed"), [])

    def test_redeem_requires_issuer(self):
        h = self.issue_voucher()
        with self.assertRaises(Unauthorized):
            self.store.redeem(OUTSIDER, h, "CERT", NOW + 1)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.ACTIVE)


class TestRedeemAfterExpiry(StoreTestCase):

    policy = RedemptionPolicy.AFTER_EXPIRY

    def test_active_record_still_active(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        with self.assertRaises(StillActive):
            self.store.redeem(ISSUER, h, "CERT", NOW + 50)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.ACTIVE)

    def test_expired_record_redeems(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.store.redeem(ISSUER, h, "CERT", NOW + 101)
        self.assertEqual(self.store.get_record(h, "CERT").status, RecordStatus.REDEEMED)
        self.assertEqual(
            [n for n in self.names() if n in ("Validated", "Redeemed")],
            ["Validated", "Redeemed"],
        )

    def test_text_payload_never_redeemable(self):
        h = payload_hash("forever")
        self.store.issue(ISSUER, h, "CERT", "forever", NOW)
        with self.assertRaises(StillActive):
            self.store.redeem(ISSUER, h, "CERT", NOW + 10 ** 9)


class TestExtendDeadline(StoreTestCase):

    def test_extend(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.store.extend_deadline(ISSUER, h, NOW + 1000, NOW + 10)
        self.assertEqual(self.store.get_record(h, "CERT").deadline, NOW + 1000)
        self.store.verify(h, "CERT", NOW + 500)
        extended = self.events.events(kind="Extended")[0].event
        self.assertEqual(extended.new_deadline, NOW + 1000)

    def test_admin_may_extend(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.store.extend_deadline(ADMIN, h, NOW + 1000, NOW, "CERT")

    def test_outsider_may_not_extend(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        with self.assertRaises(Unauthorized):
            self.store.extend_deadline(OUTSIDER, h, NOW + 1000, NOW)

    def test_rejects_past_zero_and_earlier(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        for bad in (0, NOW - 1, NOW, NOW + 50):
            with self.subTest(new_deadline=bad):
                with self.assertRaises(InvalidDate):
                    self.store.extend_deadline(ISSUER, h, bad, NOW)
        self.assertEqual(self.store.get_record(h, "CERT").deadline, NOW + 100)
        self.assertEqual(self.events.events(kind="Extended"), [])

    def test_equal_deadline_accepted(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        self.store.extend_deadline(ISSUER, h, NOW + 100, NOW)

    def test_record_without_deadline(self):
        h = payload_hash("forever")
        self.store.issue(ISSUER, h, "CERT", "forever", NOW)
        with self.assertRaises(InvalidDate):
            self.store.extend_deadline(ISSUER, h, NOW + 1000, NOW)

    def test_redeemed_checked_before_date(self):
        h = self.issue_voucher()
        self.store.redeem(ISSUER, h, "CERT", NOW + 1)
        with self.assertRaises(AlreadyRedeemed):
            self.store.extend_deadline(ISSUER, h, NOW - 1, NOW + 2)

    def test_does_not_reactivate_expired(self):
        h = self.issue_voucher(valid_until=NOW + 100)
        with self.assertRaises(Expired):
            self.store.verify(h, "CERT", NOW + 200)
        self.store.extend_deadline(ISSUER, h, NOW + 5000, NOW + 200)
        record = self.store.get_record(h, "CERT")
        self.assertEqual(record.status, RecordStatus.EXPIRED)
        self.assertEqual(record.deadline, NOW + 5000)
        with self.assertRaises(Expired):
            self.store.verify(h, "CERT", NOW + 300)


class TestExternalRef(StoreTestCase):

    def test_set_external_ref(self):
        h = self.issue_voucher()
        self.store.set_external_ref(ISSUER, h, "CERT", "ipfs://meta/1.json")
        self.assertEqual(self.store.get_record(h, "CERT").external_ref, "ipfs://meta/1.json")
        self.assertEqual(self.events.events(kind="ExternalRefUpdated")[0].event.external_ref, "ipfs://meta/1.json")

    def test_requires_issuer(self):
        h = self.issue_voucher()
        with self.assertRaises(Unauthorized):
            self.store.set_external_ref(ADMIN, h, "CERT", "ipfs://x")


class TestRecordModel(unittest.TestCase):

    def make(self, deadline):
        return Record(
            slot_id=1,
            content_hash="sha256:" + "0" * 64,
            owner_identity=ISSUER,
            category=category_key("CERT"),
            payload=TextPayload("x"),
            created_at=NOW,
            deadline=deadline,
        )

    def test_effective_status_is_pure(self):
        record = self.make(NOW + 10)
        self.assertEqual(effective_status(record, NOW + 11), RecordStatus.EXPIRED)
        self.assertEqual(record.status, RecordStatus.ACTIVE)

    def test_materialize_reports_change(self):
        record = self.make(NOW + 10)
        self.assertFalse(materialize_expiry(record, NOW + 10))
        self.assertTrue(materialize_expiry(record, NOW + 11))
        self.assertFalse(materialize_expiry(record, NOW + 12))

    def test_no_backward_transition(self):
        record = self.make(None)
        record.transition(RecordStatus.REDEEMED)
        with self.assertRaises(RuntimeError):
            record.transition(RecordStatus.ACTIVE)
        with self.assertRaises(RuntimeError):
            record.transition(RecordStatus.EXPIRED)

    def test_dict_round_trip_keeps_voucher(self):
        record = self.make(NOW + 10)
        record.payload = voucher()
        self.assertEqual(Record.from_dict(record.to_dict()), record)

    def test_voucher_accepts_rfc3339(self):
        payload = VoucherPayload.from_dict({
            "subject": "alice",
            "code": "C-1",
            "valid_until": "2024-01-01T00:00:00Z",
        })
        self.assertEqual(payload.deadline, 1704067200)

    def test_voucher_window_validated(self):
        with self.assertRaises(ValueError):
            VoucherPayload(subject="a", code="c", valid_until=100, valid_from=200)


if __name__ == "__main__":
    unittest.main()
