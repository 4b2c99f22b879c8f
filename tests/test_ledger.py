"""
certledger Ledger test suite

End-to-end scenarios through the Ledger facade, direct and delegated.
"""

import threading
import unittest

from certledger import (
    AlreadyExists,
    AlreadyRedeemed,
    CategoryNotApproved,
    Expired,
    InvalidDate,
    InvalidNonce,
    Ledger,
    RecordStatus,
    RedemptionPolicy,
    Role,
    TokenNotExists,
    TransferAttempted,
    Unauthorized,
    UnknownFunction,
    generate_key_pair,
    payload_hash,
    sign_call,
)
from certledger.hashing import category_key

START = 1_700_000_000


class FakeClock:

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now


class LedgerTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.admin = generate_key_pair()
        self.issuer = generate_key_pair()
        self.outsider = generate_key_pair()
        self.ledger = Ledger(admin=self.admin.identity, clock=self.clock)
        self.ledger.grant_role(self.admin.identity, Role.ISSUER, self.issuer.identity)

    @property
    def A(self):
        return self.admin.identity

    @property
    def I(self):
        return self.issuer.identity

    def relay(self, key, function, args, nonce=None):
        if nonce is None:
            nonce = self.ledger.nonce_of(key.identity)
        req = sign_call(key, self.ledger.domain, nonce, function, args)
        return self.ledger.delegated_execute(req["identity"], req["nonce"], req["encoded_call"], req["signature"])


class TestScenarios(LedgerTestCase):

    def test_issue_duplicate_verify_redeem(self):
        self.ledger.approve_category(self.A, "CERT")
        h1 = payload_hash("payload-A")

        self.assertEqual(self.ledger.issue(self.I, h1, "CERT", "payload-A"), 1)
        with self.assertRaises(AlreadyExists):
            self.ledger.issue(self.I, h1, "CERT", "payload-B")
        self.ledger.verify(h1, "CERT")
        self.ledger.redeem(self.I, h1, "CERT")
        self.assertEqual(self.ledger.get_record(h1, "CERT").status, RecordStatus.REDEEMED)
        with self.assertRaises(AlreadyRedeemed):
            self.ledger.verify(h1, "CERT")
        with self.assertRaises(AlreadyRedeemed):
            self.ledger.redeem(self.I, h1, "CERT")

    def test_unapproved_category_regardless_of_hash(self):
        with self.assertRaises(CategoryNotApproved):
            self.ledger.issue(self.I, payload_hash("fresh"), "CERT", "fresh")
        self.assertEqual(self.ledger.total_supply(), 0)

    def test_extend_scenarios(self):
        self.ledger.approve_category(self.A, "CERT")
        voucher = {"subject": "alice", "code": "V-1", "valid_until": START + 100}
        h1 = payload_hash(voucher)
        self.ledger.issue(self.I, h1, "CERT", voucher)

        with self.assertRaises(InvalidDate):
            self.ledger.extend_deadline(self.I, h1, START - 1)

        self.ledger.redeem(self.I, h1, "CERT")
        with self.assertRaises(AlreadyRedeemed):
            self.ledger.extend_deadline(self.I, h1, START + 1000)

    def test_extensions_never_decrease(self):
        self.ledger.approve_category(self.A, "CERT")
        voucher = {"subject": "bob", "code": "V-2", "valid_until": START + 100}
        h = payload_hash(voucher)
        self.ledger.issue(self.I, h, "CERT", voucher)
        deadlines = [START + 100]
        for candidate in (START + 500, START + 200, START + 500, START + 900):
            try:
                self.ledger.extend_deadline(self.I, h, candidate, "CERT")
            except InvalidDate:
                pass
            deadlines.append(self.ledger.get_record(h, "CERT").deadline)
        self.assertEqual(deadlines, sorted(deadlines))
        self.assertEqual(deadlines[-1], START + 900)

    def test_verify_past_deadline(self):
        self.ledger.approve_category(self.A, "CERT")
        voucher = {"subject": "carol", "code": "V-3", "valid_until": START + 60}
        h = payload_hash(voucher)
        self.ledger.issue(self.I, h, "CERT", voucher)
        self.assertEqual(self.ledger.get_status(h, "CERT"), RecordStatus.ACTIVE)

        self.clock.now = START + 61
        self.assertEqual(self.ledger.get_status(h, "CERT"), RecordStatus.EXPIRED)
        for _ in range(3):
            with self.assertRaises(Expired):
                self.ledger.verify(h, "CERT")
        self.assertEqual(self.ledger.get_record(h, "CERT").status, RecordStatus.EXPIRED)
        flips = [e for e in self.ledger.get_events(kind="Validated") if not e.event.is_valid]
        self.assertEqual(len(flips), 1)


class TestGovernance(LedgerTestCase):

    def test_deployer_is_admin(self):
        self.assertTrue(self.ledger.has_role(self.A, Role.ADMIN, self.A))
        granted = self.ledger.get_events(kind="RoleGranted")
        self.assertEqual(granted[0].event.identity, self.A)

    def test_role_gated_ops_without_role(self):
        o = self.outsider.identity
        self.ledger.approve_category(self.A, "CERT")
        h = payload_hash("x")
        before = self.ledger.snapshot()
        for op, args in (
            (self.ledger.approve_category, (o, "LEVY")),
            (self.ledger.issue, (o, h, "CERT", "x")),
            (self.ledger.grant_role, (o, Role.ISSUER, o)),
            (self.ledger.revoke_role, (o, Role.ISSUER, self.I)),
            (self.ledger.has_role, (o, Role.ADMIN, self.A)),
        ):
            with self.subTest(op=op.__name__):
                with self.assertRaises(Unauthorized):
                    op(*args)
        self.assertEqual(self.ledger.snapshot(), before)

    def test_revoked_issuer_cannot_issue(self):
        self.ledger.approve_category(self.A, "CERT")
        self.ledger.revoke_role(self.A, Role.ISSUER, self.I)
        with self.assertRaises(Unauthorized):
            self.ledger.issue(self.I, payload_hash("x"), "CERT", "x")
        self.assertEqual(self.ledger.get_events(kind="RoleRevoked")[0].event.identity, self.I)

    def test_category_event_carries_key(self):
        key = self.ledger.approve_category(self.A, "LEVY")
        self.assertEqual(key, category_key("LEVY"))
        self.assertEqual(self.ledger.get_events(kind="CategoryApproved")[0].event.category, key)
        self.assertTrue(self.ledger.is_category_approved(key))


class TestSlots(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.ledger.approve_category(self.A, "CERT")
        self.h = payload_hash("payload-A")
        self.slot = self.ledger.issue(self.I, self.h, "CERT", "payload-A")

    def test_ownership_surface(self):
        self.assertEqual(self.ledger.owner_of(self.slot), self.I)
        self.assertEqual(self.ledger.balance_of(self.I), 1)
        self.assertEqual(self.ledger.total_supply(), 1)
        self.assertEqual(self.ledger.slot_of(self.h), self.slot)
        self.assertEqual(self.ledger.slot_of(payload_hash("unknown")), 0)

    def test_transfer_refused(self):
        with self.assertRaises(TransferAttempted):
            self.ledger.transfer(self.I, self.slot, self.outsider.identity)
        self.assertEqual(self.ledger.owner_of(self.slot), self.I)

    def test_token_uri_is_external_ref(self):
        self.assertEqual(self.ledger.token_uri(self.slot), "")
        self.ledger.set_external_ref(self.I, self.h, "CERT", "ipfs://cert/1")
        self.assertEqual(self.ledger.token_uri(self.slot), "ipfs://cert/1")

    def test_unknown_slot(self):
        with self.assertRaises(TokenNotExists):
            self.ledger.owner_of(0)
        with self.assertRaises(TokenNotExists):
            self.ledger.token_uri(99)


class TestDelegation(LedgerTestCase):

    def test_relayed_issue_matches_direct(self):
        direct = Ledger(admin=self.A, clock=self.clock)
        direct.grant_role(self.A, Role.ISSUER, self.I)
        direct.approve_category(self.A, "CERT")
        h = payload_hash("payload-A")
        direct.issue(self.I, h, "CERT", "payload-A")

        self.relay(self.admin, "approve_category", {"category": "CERT"})
        slot = self.relay(self.issuer, "issue", {"content_hash": h, "category": "CERT", "payload": "payload-A"})

        self.assertEqual(slot, 1)
        self.assertEqual(self.ledger.get_record(h, "CERT"), direct.get_record(h, "CERT"))
        self.assertEqual(self.ledger.nonce_of(self.I), 1)
        self.assertEqual(self.ledger.nonce_of(self.A), 1)

    def test_relayed_call_checks_roles_of_signer(self):
        self.ledger.approve_category(self.A, "CERT")
        with self.assertRaises(Unauthorized):
            self.relay(self.outsider, "issue", {"content_hash": payload_hash("x"), "category": "CERT", "payload": "x"})
        self.assertEqual(self.ledger.nonce_of(self.outsider.identity), 0)

    def test_wrong_nonce_does_not_advance(self):
        with self.assertRaises(InvalidNonce):
            self.relay(self.admin, "approve_category", {"category": "CERT"}, nonce=4)
        self.assertEqual(self.ledger.nonce_of(self.A), 0)
        self.assertFalse(self.ledger.is_category_approved("CERT"))

    def test_relayed_verify_and_has_role(self):
        self.ledger.approve_category(self.A, "CERT")
        h = payload_hash("p")
        self.ledger.issue(self.I, h, "CERT", "p")
        self.assertIsNone(self.relay(self.outsider, "verify", {"content_hash": h, "category": "CERT"}))
        self.assertTrue(self.relay(self.issuer, "has_role", {"role": "ISSUER", "identity": self.I}))

    def test_relayed_extend_without_category(self):
        self.ledger.approve_category(self.A, "CERT")
        voucher = {"subject": "dan", "code": "V-9", "valid_until": START + 10}
        h = payload_hash(voucher)
        self.ledger.issue(self.I, h, "CERT", voucher)
        self.relay(self.admin, "extend_deadline", {"content_hash": h, "new_deadline": START + 99})
        self.assertEqual(self.ledger.get_record(h).deadline, START + 99)

    def test_unknown_function(self):
        with self.assertRaises(UnknownFunction):
            self.relay(self.admin, "transfer", {"slot_id": 1, "to": self.I})
        with self.assertRaises(UnknownFunction):
            self.relay(self.admin, "approve_category", {"category": "CERT", "extra": 1})
        self.assertEqual(self.ledger.nonce_of(self.A), 0)

    def test_relayed_content_hash_must_be_a_digest(self):
        self.ledger.approve_category(self.A, "CERT")
        for bad in (["x"], {"h": 1}, "not-a-digest", 7):
            with self.assertRaises(ValueError):
                self.relay(self.issuer, "issue", {"content_hash": bad, "category": "CERT", "payload": "p"})
            with self.assertRaises(ValueError):
                self.relay(self.outsider, "verify", {"content_hash": bad, "category": "CERT"})
        self.assertEqual(self.ledger.total_supply(), 0)
        self.assertEqual(self.ledger.nonce_of(self.I), 0)

    def test_relayed_malformed_arguments_raise_value_error(self):
        self.ledger.approve_category(self.A, "CERT")
        h = payload_hash("p")
        for function, args in (
            ("issue", {"content_hash": h, "category": ["CERT"], "payload": "p"}),
            ("issue", {"content_hash": h, "category": "CERT", "payload": ["p"]}),
            ("issue", {"content_hash": h, "category": "CERT",
                       "payload": {"subject": "a", "code": "c", "valid_until": START + 5, "attributes": [1]}}),
            ("grant_role", {"role": "ISSUER", "identity": ["x"]}),
            ("grant_role", {"role": ["ISSUER"], "identity": self.I}),
        ):
            signer = self.admin if function == "grant_role" else self.issuer
            with self.assertRaises(ValueError):
                self.relay(signer, function, args)
        self.assertEqual(self.ledger.total_supply(), 0)

    def test_renounce_via_relay(self):
        self.relay(self.issuer, "renounce_role", {"role": "ISSUER"})
        self.assertFalse(self.ledger.has_role(self.I, Role.ISSUER, self.I))


class TestSnapshot(LedgerTestCase):

    def test_restore_round_trip(self):
        self.ledger.approve_category(self.A, "CERT")
        voucher = {"subject": "erin", "code": "V-4", "valid_until": START + 100}
        h1, h2 = payload_hash(voucher), payload_hash("text")
        self.ledger.issue(self.I, h1, "CERT", voucher)
        self.relay(self.issuer, "issue", {"content_hash": h2, "category": "CERT", "payload": "text"})
        self.ledger.redeem(self.I, h2, "CERT")

        snapshot = self.ledger.snapshot()
        restored = Ledger.restore(snapshot, clock=self.clock)

        self.assertEqual(restored.snapshot(), snapshot)
        self.assertEqual(restored.nonce_of(self.I), 1)
        self.assertEqual(restored.get_record(h2, "CERT").status, RecordStatus.REDEEMED)
        with self.assertRaises(AlreadyExists):
            restored.issue(self.I, h1, "CERT", voucher)
        self.assertEqual(restored.issue(self.I, payload_hash("next"), "CERT", "next"), 3)
        self.assertEqual(len(restored.events), len(self.ledger.events) + 1)

    def test_policy_survives_restore(self):
        ledger = Ledger(admin=self.A, clock=self.clock, policy=RedemptionPolicy.AFTER_EXPIRY)
        restored = Ledger.restore(ledger.snapshot(), clock=self.clock)
        self.assertEqual(restored.policy, RedemptionPolicy.AFTER_EXPIRY)

    def test_unknown_snapshot_version(self):
        snapshot = self.ledger.snapshot()
        snapshot["version"] = 99
        with self.assertRaises(ValueError):
            Ledger.restore(snapshot)


class TestConcurrency(LedgerTestCase):

    def test_concurrent_duplicate_issue_allocates_once(self):
        self.ledger.approve_category(self.A, "CERT")
        h = payload_hash("contended")
        results = []

        def worker():
            try:
                results.append(self.ledger.issue(self.I, h, "CERT", "contended"))
            except AlreadyExists:
                results.append(None)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual([r for r in results if r is not None], [1])
        self.assertEqual(self.ledger.total_supply(), 1)


if __name__ == "__main__":
    unittest.main()
