import itertools
import logging
from decimal import Decimal

import pytest

from pool_guardian.config_loader import DetectorConfig
from pool_guardian.constants import Direction
from pool_guardian.detector import SandwichDetector, is_sandwich
from pool_guardian.exceptions import InvalidInputError
from pool_guardian.fixed_point import price_to_sqrt_price_x96, to_base_units
from pool_guardian.types import SandwichCandidate, TradeRecord

A_TO_B = Direction.A_TO_B
B_TO_A = Direction.B_TO_A

ATTACKER = "0xattacker00000000000000000000000000000001"
VICTIM = "0xvictim0000000000000000000000000000000002"
OTHER = "0xother00000000000000000000000000000000003"


def trade(trader, direction, seq, before="1.0", after="1.0", amount="10", pool_id="pool"):
    return TradeRecord(
        trader=trader,
        direction=direction,
        price_before=price_to_sqrt_price_x96(before),
        price_after=price_to_sqrt_price_x96(after),
        seq=seq,
        amount_in=to_base_units(amount),
        pool_id=pool_id,
    )


def classic_sandwich(start_seq=1):
    return [
        trade(ATTACKER, A_TO_B, start_seq, "1.0", "0.95", amount="5"),
        trade(VICTIM, A_TO_B, start_seq + 1, "0.95", "0.93", amount="10"),
        trade(ATTACKER, B_TO_A, start_seq + 2, "0.93", "0.98", amount="5"),
    ]


@pytest.fixture
def detector():
    return SandwichDetector(DetectorConfig(min_price_move=Decimal("0.005")))


class TestIsSandwich:
    def test_classic_pattern(self):
        assert is_sandwich(SandwichCandidate(*classic_sandwich())) is True

    def test_attacker_equal_to_victim_never_matches(self):
        for d1, d2, d3 in itertools.product([A_TO_B, B_TO_A], repeat=3):
            candidate = SandwichCandidate(
                trade(ATTACKER, d1, 1), trade(ATTACKER, d2, 2), trade(ATTACKER, d3, 3)
            )
            assert is_sandwich(candidate) is False

    def test_victim_in_opposite_direction(self):
        candidate = SandwichCandidate(
            trade(ATTACKER, A_TO_B, 1), trade(VICTIM, B_TO_A, 2), trade(ATTACKER, B_TO_A, 3)
        )
        assert is_sandwich(candidate) is False

    def test_backrun_must_reverse(self):
        candidate = SandwichCandidate(
            trade(ATTACKER, A_TO_B, 1), trade(VICTIM, A_TO_B, 2), trade(ATTACKER, A_TO_B, 3)
        )
        assert is_sandwich(candidate) is False

    def test_outer_trades_from_different_traders(self):
        candidate = SandwichCandidate(
            trade(ATTACKER, A_TO_B, 1), trade(VICTIM, A_TO_B, 2), trade(OTHER, B_TO_A, 3)
        )
        assert is_sandwich(candidate) is False

    def test_b_to_a_sandwich(self):
        candidate = SandwichCandidate(
            trade(ATTACKER, B_TO_A, 1), trade(VICTIM, B_TO_A, 2), trade(ATTACKER, A_TO_B, 3)
        )
        assert is_sandwich(candidate) is True

    def test_direction_opposite(self):
        assert A_TO_B.opposite is B_TO_A
        assert B_TO_A.opposite is A_TO_B
        for direction in Direction:
            assert direction.opposite.opposite is direction


class TestSandwichCandidate:
    def test_create_rejects_non_monotonic_sequence(self):
        first, second, third = classic_sandwich()
        with pytest.raises(InvalidInputError) as exc_info:
            SandwichCandidate.create(first, third, second)
        assert exc_info.value.sequence == (1, 3, 2)

    def test_create_rejects_duplicate_sequence(self):
        first, second, _ = classic_sandwich()
        with pytest.raises(InvalidInputError):
            SandwichCandidate.create(first, second, second)

    def test_create_rejects_mixed_pools(self):
        with pytest.raises(InvalidInputError, match="different pools"):
            SandwichCandidate.create(
                trade(ATTACKER, A_TO_B, 1, pool_id="x"),
                trade(VICTIM, A_TO_B, 2, pool_id="y"),
                trade(ATTACKER, B_TO_A, 3, pool_id="x"),
            )

    def test_roles(self):
        candidate = SandwichCandidate.create(*classic_sandwich())
        assert candidate.attacker == ATTACKER
        assert candidate.victim == VICTIM


class TestComputeLoss:
    TEN = 10 * 10**18

    def test_loss_with_threshold_below_move(self, detector):
        loss = detector.compute_loss(
            price_to_sqrt_price_x96("1.0"),
            price_to_sqrt_price_x96("0.99"),
            self.TEN,
            A_TO_B,
        )
        # 10 * (1.0 - 0.99) = 0.1 token, up to rounding of the encoded price
        assert abs(loss - 10**17) <= 2

    def test_move_below_default_threshold_is_dust(self):
        detector = SandwichDetector()
        loss = detector.compute_loss(
            price_to_sqrt_price_x96("1.0"),
            price_to_sqrt_price_x96("0.99"),
            self.TEN,
            A_TO_B,
        )
        assert loss == 0

    def test_zero_inputs(self, detector):
        fair = price_to_sqrt_price_x96("1.0")
        exec_price = price_to_sqrt_price_x96("0.9")
        assert detector.compute_loss(fair, exec_price, 0, A_TO_B) == 0
        assert detector.compute_loss(0, exec_price, self.TEN, A_TO_B) == 0
        assert detector.compute_loss(fair, 0, self.TEN, A_TO_B) == 0

    def test_no_loss_without_price_move(self):
        detector = SandwichDetector(DetectorConfig(min_price_move=Decimal("0")))
        fair = price_to_sqrt_price_x96("1.0")
        assert detector.compute_loss(fair, fair, self.TEN, A_TO_B) == 0

    def test_favorable_move_is_not_a_loss(self, detector):
        loss = detector.compute_loss(
            price_to_sqrt_price_x96("1.0"),
            price_to_sqrt_price_x96("1.1"),
            self.TEN,
            A_TO_B,
        )
        assert loss == 0

    def test_loss_monotonic_a_to_b(self):
        detector = SandwichDetector(DetectorConfig(min_price_move=Decimal("0")))
        fair = price_to_sqrt_price_x96("1.0")
        losses = [
            detector.compute_loss(fair, price_to_sqrt_price_x96(p), self.TEN, A_TO_B)
            for p in ["1.0", "0.999", "0.99", "0.95", "0.9", "0.8", "0.5", "0.1"]
        ]
        assert losses == sorted(losses)
        assert losses[-1] > losses[0]

    def test_loss_monotonic_b_to_a(self):
        detector = SandwichDetector(DetectorConfig(min_price_move=Decimal("0")))
        fair = price_to_sqrt_price_x96("1.0")
        losses = [
            detector.compute_loss(fair, price_to_sqrt_price_x96(p), self.TEN, B_TO_A)
            for p in ["1.0", "1.001", "1.01", "1.1", "1.5", "2", "10"]
        ]
        assert losses == sorted(losses)
        assert losses[-1] > losses[0]

    def test_b_to_a_loss_value(self, detector):
        # 10 B at fair price 1.0 buys 10 A; at 2.0 only 5 A
        loss = detector.compute_loss(
            price_to_sqrt_price_x96("1"), price_to_sqrt_price_x96("2"), self.TEN, B_TO_A
        )
        assert loss == 5 * 10**18


class TestAssess:
    def test_assess_sandwich(self, detector):
        assessment = detector.assess(SandwichCandidate.create(*classic_sandwich()))

        assert assessment is not None
        assert assessment.victim == VICTIM
        assert assessment.attacker == ATTACKER
        assert assessment.victim_seq == 2
        assert assessment.pool_id == "pool"
        assert assessment.direction is A_TO_B
        assert assessment.expected_out == 10 * 10**18
        # 10 * (1.0 - 0.95)
        assert abs(assessment.loss - 5 * 10**17) <= 2
        assert assessment.loss == assessment.expected_out - assessment.actual_out

    def test_assess_non_sandwich(self, detector):
        candidate = SandwichCandidate(
            trade(ATTACKER, A_TO_B, 1), trade(VICTIM, A_TO_B, 2), trade(OTHER, B_TO_A, 3)
        )
        assert detector.assess(candidate) is None

    def test_assess_dust_sandwich_reports_zero_loss(self):
        detector = SandwichDetector()
        trades = [
            trade(ATTACKER, A_TO_B, 1, "1.0", "0.995"),
            trade(VICTIM, A_TO_B, 2, "0.995", "0.99"),
            trade(ATTACKER, B_TO_A, 3, "0.99", "1.0"),
        ]
        assessment = detector.assess(SandwichCandidate.create(*trades))
        assert assessment is not None
        assert assessment.loss == 0


class TestScan:
    def test_scan_finds_sandwich_in_stream(self, detector):
        trades = (
            [trade(OTHER, B_TO_A, 1)]
            + classic_sandwich(start_seq=2)
            + [trade(OTHER, A_TO_B, 5)]
        )
        assessments = detector.scan(trades)

        assert len(assessments) == 1
        assert assessments[0].victim == VICTIM
        assert assessments[0].victim_seq == 3

    def test_scan_empty_and_short_streams(self, detector):
        assert detector.scan([]) == []
        assert detector.scan(classic_sandwich()[:2]) == []

    def test_lookback_window(self):
        trades = [
            trade(ATTACKER, A_TO_B, 1, "1.0", "0.9"),
            trade(VICTIM, A_TO_B, 2, "0.9", "0.85"),
            trade(OTHER, A_TO_B, 3, "0.85", "0.8"),
            trade(ATTACKER, B_TO_A, 4, "0.8", "0.95"),
        ]

        narrow = SandwichDetector(DetectorConfig(lookback_window=1))
        assert narrow.scan(trades) == []

        wide = SandwichDetector(DetectorConfig(lookback_window=2))
        victims = {a.victim for a in wide.scan(trades)}
        assert victims == {VICTIM, OTHER}

    def test_one_assessment_per_victim(self):
        trades = [
            trade(ATTACKER, A_TO_B, 1),
            trade(ATTACKER, A_TO_B, 2),
            trade(VICTIM, A_TO_B, 3),
            trade(ATTACKER, B_TO_A, 4),
            trade(ATTACKER, B_TO_A, 5),
        ]
        detector = SandwichDetector(DetectorConfig(lookback_window=2))
        assessments = detector.scan(trades)

        assert len(assessments) == 1
        assert assessments[0].victim_seq == 3

    def test_out_of_order_candidate_is_rejected(self, detector):
        first, second, third = classic_sandwich()
        assessments = detector.scan([first, third, second])

        assert assessments == []
        assert detector.rejected_candidates == 1

    def test_pools_are_never_mixed(self, detector):
        trades = [
            trade(ATTACKER, A_TO_B, 1, pool_id="x"),
            trade(VICTIM, A_TO_B, 2, pool_id="y"),
            trade(ATTACKER, B_TO_A, 3, pool_id="x"),
        ]
        assert detector.scan(trades) == []
        assert detector.rejected_candidates == 0

    def test_interleaved_pools(self, detector):
        trades = [
            trade(ATTACKER, A_TO_B, 1, "1.0", "0.9", pool_id="x"),
            trade(OTHER, B_TO_A, 2, pool_id="y"),
            trade(VICTIM, A_TO_B, 3, "0.9", "0.85", pool_id="x"),
            trade(ATTACKER, B_TO_A, 4, "0.85", "0.95", pool_id="x"),
        ]
        assessments = detector.scan(trades)

        assert len(assessments) == 1
        assert assessments[0].pool_id == "x"

    def test_skip_victims(self, detector):
        assert detector.scan(classic_sandwich(), skip_victims={("pool", 2)}) == []

    def test_scan_logs_detection(self, detector, caplog):
        caplog.set_level(logging.INFO, logger="pool_guardian.detector")
        detector.scan(classic_sandwich())
        assert "Sandwich detected" in caplog.text

    def test_invalid_lookback_window(self):
        with pytest.raises(ValueError):
            SandwichDetector(DetectorConfig(lookback_window=0))
