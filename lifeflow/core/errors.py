from __future__ import annotations


class TimerNotFoundError(LookupError):
    def __init__(self, timer_id: str) -> None:
        super().__init__(f"Running timer {timer_id!r} not found")
        self.timer_id = timer_id


class TimerAlreadyRunningError(ValueError):
    def __init__(self, subject_id: str, timer_id: str) -> None:
        super().__init__(f"Subject {subject_id!r} already has running timer {timer_id!r}")
        self.subject_id = subject_id
        self.timer_id = timer_id


class ConfigurationMissingError(LookupError):
    """No pomodoro config exists; the user has to create one first."""


class InvalidSettingError(ValueError):
    def __init__(self, key: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid value {value!r} for setting {key!r}: {reason}")
        self.key = key
        self.value = value
