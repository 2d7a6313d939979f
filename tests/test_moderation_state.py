from __future__ import annotations

import pytest

from state.moderation import Mode, ModerationState, SpeakingActivity, SpeechQuota, parse_mode


def test_moderation_state_defaults_and_idempotence():
    state = ModerationState(target_id=1)
    assert state.enabled is True
    assert state.mode is Mode.KICK

    assert state.set_enabled(True) is False
    assert state.set_enabled(False) is True
    assert state.enabled is False

    assert state.set_mode(Mode.KICK) is False
    assert state.set_mode("discipline") is True
    assert state.mode is Mode.DISCIPLINE

    with pytest.raises(ValueError):
        state.set_mode("banish")


def test_speech_quota_counts_only_while_enabled():
    quota = SpeechQuota(target_id=1, guild_id=2, limit=2)
    quota.increment()
    quota.increment()
    assert quota.reached

    quota.reset()
    assert quota.count == 0
    quota.enabled = False
    quota.increment()
    assert quota.count == 0


def test_speaking_activity():
    activity = SpeakingActivity()
    activity.mark_started(1)
    activity.mark_stopped(1)
    activity.mark_started(1)
    activity.mark_started(2)

    assert activity.count_for(1) == 2
    assert activity.top(1) == ((1, 2),)
    assert activity.is_speaking(2)

    activity.reset_user(1)
    assert activity.count_for(1) == 0
    assert not activity.is_speaking(1)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, Mode.KICK), ("", Mode.KICK), ("Discipline ", Mode.DISCIPLINE), ("nope", Mode.KICK)],
)
def test_parse_mode(raw, expected):
    assert parse_mode(raw) is expected
