"""
Unit tests for the interactive publisher.

Tests:
- the per-step state machine
- fee choice, invalid choices and stop
- fee escalation at the same nonce
- receipt polling backoff and timeout
- revert and address prediction failures
- publishing a whole issuance against the in-memory ledger
"""
import pytest
from eth_utils import keccak, to_checksum_address

from s3_issuance.config.issuance_config import WEI_PER_GWEI
from s3_issuance.errors import (
    AddressPredictionMismatch,
    InvalidFeeChoice,
    OperatorStop,
    ReceiptTimeout,
    TransactionRevert,
)
from s3_issuance.services.audit import verify_deployment
from s3_issuance.services.base import EntryType, SecurityDefinition, SecurityMetadata
from s3_issuance.services.codec import private_key_to_address
from s3_issuance.services.publisher import (
    InteractivePublisher,
    PublishEvent,
    PublishState,
    parse_fee_choice,
    publish_stage1,
    publish_stage2,
    security_id_from_receipt,
    transition,
    wait_for_receipt,
)
from s3_issuance.services.staging import stage_deploy_and_migrate, stage_distribute, stage_init

from conftest import CAP_TABLES, CONTROLLER_KEY, INVESTOR_A, INVESTOR_B, RESOLVER, ScriptedOperator

GWEI = WEI_PER_GWEI
FEES = [5 * GWEI, 7 * GWEI, 9 * GWEI]


def tx_hash_of(variant):
    return "0x" + keccak(variant.raw_transaction).hex()


@pytest.fixture
def init_step(security):
    _, step = stage_init(security, CAP_TABLES, 0, FEES, 4, CONTROLLER_KEY)
    return step


def make_publisher(ledger, operator, clock=None, **kwargs):
    if clock is not None:
        kwargs.setdefault('sleep', clock.sleep)
        kwargs.setdefault('clock', clock)
    else:
        kwargs.setdefault('sleep', lambda seconds: None)
    return InteractivePublisher(ledger, operator, **kwargs)


class TestTransition:
    """Test the pure transition function."""

    def test_happy_path(self):
        state = transition(PublishState.PRESENTING, PublishEvent.CHOOSE)
        assert state == PublishState.SUBMITTED
        assert transition(state, PublishEvent.CONFIRM) == PublishState.CONFIRMED

    def test_retry_loop(self):
        state = transition(PublishState.SUBMITTED, PublishEvent.RETRY)
        assert state == PublishState.RETRY_REQUESTED
        assert transition(state, PublishEvent.REPRESENT) == PublishState.PRESENTING

    def test_reject_stays_presenting(self):
        assert transition(PublishState.PRESENTING, PublishEvent.REJECT) == PublishState.PRESENTING

    def test_stop(self):
        assert transition(PublishState.PRESENTING, PublishEvent.STOP) == PublishState.STOPPED

    def test_wait(self):
        assert transition(PublishState.PRESENTING, PublishEvent.WAIT) == PublishState.SUBMITTED

    @pytest.mark.parametrize("state,event", [
        (PublishState.CONFIRMED, PublishEvent.CHOOSE),
        (PublishState.SUBMITTED, PublishEvent.STOP),
        (PublishState.PRESENTING, PublishEvent.CONFIRM),
        (PublishState.STOPPED, PublishEvent.REPRESENT),
    ])
    def test_illegal_transitions(self, state, event):
        with pytest.raises(ValueError):
            transition(state, event)


class TestParseFeeChoice:

    def test_gwei_answer(self, init_step):
        assert parse_fee_choice(" 7 ", init_step) == 7 * GWEI

    def test_unstaged_fee(self, init_step):
        with pytest.raises(InvalidFeeChoice):
            parse_fee_choice("6", init_step)

    def test_not_a_number(self, init_step):
        with pytest.raises(InvalidFeeChoice):
            parse_fee_choice("cheap", init_step)


class TestPublishStep:
    """Test publishing a single step."""

    def test_publishes_chosen_variant(self, ledger, init_step):
        publisher = make_publisher(ledger, ScriptedOperator(["7"]))
        tx_hash = publisher.publish(init_step)
        assert tx_hash == tx_hash_of(init_step.variant_for(7 * GWEI))
        assert len(ledger.sent) == 1
        assert ledger.sent[0]['gasPrice'] == 7 * GWEI

    def test_records_send_entry(self, ledger, init_step):
        publisher = make_publisher(ledger, ScriptedOperator(["5"]))
        tx_hash = publisher.publish(init_step)
        [entry] = publisher.records
        assert entry.type == EntryType.SEND
        assert entry.tx_hash == tx_hash
        assert entry.fee_level == 5 * GWEI
        assert entry.to_dict()['feeLevel'] == hex(5 * GWEI)

    def test_invalid_choice_reprompts(self, ledger, init_step):
        """An unstaged fee is rejected and the choices are shown again."""
        operator = ScriptedOperator(["6", "9"])
        publisher = make_publisher(ledger, operator)
        publisher.publish(init_step)
        assert len(operator.offered) == 2
        assert [tx['gasPrice'] for tx in ledger.sent] == [9 * GWEI]

    def test_stop_before_broadcast(self, ledger, init_step):
        publisher = make_publisher(ledger, ScriptedOperator(["stop"]))
        with pytest.raises(OperatorStop):
            publisher.publish(init_step)
        assert ledger.sent == [], "nothing is broadcast after stop"

    def test_failed_broadcast_reprompts(self, ledger, init_step):
        ledger.reject_broadcasts = 1
        operator = ScriptedOperator(["5", "5"])
        publisher = make_publisher(ledger, operator)
        publisher.publish(init_step)
        assert len(ledger.sent) == 1
        assert len(operator.offered) == 2


class TestFeeEscalation:
    """Test retrying a step with a higher fee."""

    def test_retry_replaces_with_higher_fee(self, ledger, init_step):
        ledger.unmined_fees.add(5 * GWEI)
        operator = ScriptedOperator(["5", "9"], submit_answers=["retry"])
        publisher = make_publisher(ledger, operator)

        tx_hash = publisher.publish(init_step)

        assert tx_hash == tx_hash_of(init_step.variant_for(9 * GWEI))
        assert [tx['nonce'] for tx in ledger.sent] == [0, 0], "replacement reuses the nonce"
        assert operator.offered[1] == [7 * GWEI, 9 * GWEI], "only higher fees are offered"

    def test_equal_fee_rejected_on_retry(self, ledger, init_step):
        ledger.unmined_fees.add(5 * GWEI)
        operator = ScriptedOperator(["5", "5", "7"], submit_answers=["retry"])
        publisher = make_publisher(ledger, operator)
        publisher.publish(init_step)
        assert [tx['gasPrice'] for tx in ledger.sent] == [5 * GWEI, 7 * GWEI]

    def test_earlier_variant_may_win(self, ledger, init_step):
        """Either broadcast variant confirming completes the step."""
        ledger.unmined_fees.add(9 * GWEI)
        publisher = make_publisher(ledger, ScriptedOperator(["5", "9"], submit_answers=["retry"]))
        ledger.unmined_fees.add(5 * GWEI)

        def mine_first(seconds):
            ledger.receipts[ledger.sent[0]['hash']] = {'status': 1, 'gasUsed': 21000, 'logs': []}

        publisher._sleep = mine_first
        tx_hash = publisher.publish(init_step)
        assert tx_hash == ledger.sent[0]['hash']
        assert publisher.records[-1].fee_level == 5 * GWEI

    def test_retry_at_highest_fee_waits(self, ledger, init_step):
        """With no higher fee staged, a retry falls back to waiting."""
        operator = ScriptedOperator(["9"], submit_answers=["retry"])
        publisher = make_publisher(ledger, operator)
        publisher.publish(init_step)
        assert len(operator.offered) == 1, "no second prompt without a higher fee"
        assert len(ledger.sent) == 1

    def test_stop_after_broadcast_waits(self, ledger, init_step):
        """Stopping with a transaction in flight waits for it instead."""
        publisher = make_publisher(ledger, ScriptedOperator(["5", "stop"], submit_answers=["retry"]))
        tx_hash = publisher.publish(init_step)
        assert tx_hash == ledger.sent[0]['hash']


class TestReceipts:
    """Test receipt polling."""

    def test_backoff_until_timeout(self, ledger, clock):
        with pytest.raises(ReceiptTimeout) as exc_info:
            wait_for_receipt(ledger, ["0xabc"], poll_delay=1, max_delay=30, timeout=5,
                             sleep=clock.sleep, clock=clock)
        assert clock.sleeps == [1, 2, 4]
        assert exc_info.value.tx_hashes == ["0xabc"]

    def test_delay_is_capped(self, ledger, clock):
        with pytest.raises(ReceiptTimeout):
            wait_for_receipt(ledger, ["0xabc"], poll_delay=1, max_delay=3, timeout=20,
                             sleep=clock.sleep, clock=clock)
        assert clock.sleeps[:3] == [1, 2, 3]
        assert max(clock.sleeps) == 3

    def test_unbounded_polls_until_mined(self, ledger, clock):
        def sleep(seconds):
            clock.sleep(seconds)
            if len(clock.sleeps) == 50:
                ledger.receipts["0xabc"] = {'status': 1}

        tx_hash, receipt = wait_for_receipt(ledger, ["0xabc"], timeout=None, sleep=sleep, clock=clock)
        assert tx_hash == "0xabc"
        assert len(clock.sleeps) == 50

    def test_publisher_timeout(self, ledger, clock, init_step):
        ledger.unmined_fees.add(5 * GWEI)
        publisher = make_publisher(ledger, ScriptedOperator(["5"]), clock=clock, timeout=60)
        with pytest.raises(ReceiptTimeout):
            publisher.publish(init_step)

    def test_security_id_from_hex_log(self):
        receipt = {'logs': [{'data': "0x" + (17).to_bytes(32, 'big').hex()}]}
        assert security_id_from_receipt(receipt) == 17

    def test_security_id_from_bytes_log(self):
        receipt = {'logs': [{'data': (3).to_bytes(32, 'big')}]}
        assert security_id_from_receipt(receipt) == 3

    def test_security_id_without_logs(self):
        with pytest.raises(ValueError):
            security_id_from_receipt({'logs': []})


class TestFailures:
    """Test fatal publishing failures."""

    def test_revert_raises_with_hash(self, ledger, init_step):
        ledger.revert = True
        publisher = make_publisher(ledger, ScriptedOperator(["5"]))
        with pytest.raises(TransactionRevert) as exc_info:
            publisher.publish(init_step)
        assert exc_info.value.tx_hash == ledger.sent[0]['hash']
        assert "transaction failed" in str(exc_info.value)
        assert publisher.records == []

    def test_revert_halts_sequence(self, ledger, security):
        nonce, steps = stage_distribute(security, 1, CAP_TABLES, 0, FEES, 4, CONTROLLER_KEY)
        ledger.revert = True
        publisher = make_publisher(ledger, ScriptedOperator(["5", "5"]))
        with pytest.raises(TransactionRevert):
            publisher.publish_all(steps)
        assert len(ledger.sent) == 1, "the second distribution is never broadcast"

    def test_address_mismatch(self, ledger, security, artifacts):
        _, steps = stage_deploy_and_migrate(
            security, 1, CAP_TABLES, RESOLVER, 0, FEES, 4, CONTROLLER_KEY, artifacts,
        )
        ledger.contract_address_override = "0x" + "99" * 20
        publisher = make_publisher(ledger, ScriptedOperator(["5"]))
        with pytest.raises(AddressPredictionMismatch) as exc_info:
            publisher.publish(steps[0])
        assert exc_info.value.predicted == steps[0].predicted_address


class TestIssuanceFlow:
    """Publish a complete issuance against the in-memory ledger."""

    def test_stage1_then_stage2(self, ledger, security, artifacts):
        nonce, init = stage_init(security, CAP_TABLES, 0, FEES, 4, CONTROLLER_KEY)
        publisher = make_publisher(ledger, ScriptedOperator(["5"] * 8))

        security_ids = publish_stage1(publisher, [(security.name, init)])
        assert security_ids == {security.name: 1}

        security_id = security_ids[security.name]
        nonce, distribute = stage_distribute(security, security_id, CAP_TABLES, nonce, FEES, 4, CONTROLLER_KEY)
        nonce, deploy = stage_deploy_and_migrate(
            security, security_id, CAP_TABLES, RESOLVER, nonce, FEES, 4, CONTROLLER_KEY, artifacts,
        )
        assert nonce == 8

        records = publish_stage2(publisher, [(security.name, distribute + deploy)])
        assert len(records) == 7
        assert [tx['nonce'] for tx in ledger.sent] == list(range(8))
        assert ledger.receipts[records[2].tx_hash]['contractAddress'] == deploy[0].predicted_address
        assert ledger.receipts[records[3].tx_hash]['contractAddress'] == deploy[1].predicted_address
        assert ledger.cap_tables[security_id] == {
            private_key_to_address(CONTROLLER_KEY): 0,
            to_checksum_address(INVESTOR_A): 100000,
            to_checksum_address(INVESTOR_B): 10000000,
        }
        logic, front = deploy[0].predicted_address, deploy[1].predicted_address
        assert ledger.migrated[security_id] == logic
        audit = verify_deployment(ledger, logic, front, RESOLVER)
        assert [entry.result for entry in audit] == [front, RESOLVER]

    def test_security_ids_reported_before_a_stop(self, ledger, security):
        """Ids of securities already initialized are handed out before a later stop."""
        second = SecurityDefinition(
            admin=security.admin, resolver=security.resolver, investors=security.investors,
            metadata=SecurityMetadata(name="Second Security"),
        )
        nonce, first_init = stage_init(security, CAP_TABLES, 0, FEES, 4, CONTROLLER_KEY)
        _, second_init = stage_init(second, CAP_TABLES, nonce, FEES, 4, CONTROLLER_KEY)
        publisher = make_publisher(ledger, ScriptedOperator(["5", "stop"]))

        seen = []
        with pytest.raises(OperatorStop):
            publish_stage1(
                publisher,
                [(security.name, first_init), (second.name, second_init)],
                lambda name, security_id: seen.append((name, security_id)),
            )
        assert seen == [(security.name, 1)]
        assert len(ledger.sent) == 1
