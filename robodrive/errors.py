"""Ошибки управления приводом."""


class DriveError(RuntimeError):
    """Базовая ошибка robodrive."""


class ActuatorError(DriveError):
    """Мотор, датчик или кнопки не выполнили команду (нет железа, ошибка I/O)."""


class InvalidCommand(DriveError, ValueError):
    """Команду нельзя разобрать или зажать в допустимый диапазон."""


class DriveBusyError(DriveError):
    """Моторы уже заняты другим режимом управления."""
