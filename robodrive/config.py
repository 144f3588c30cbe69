from enum import Enum

from pydantic import BaseModel, Field, model_validator

from robodrive.messages import ControlMode


class ServerConfig(BaseModel):
    """Настройки веб-сервера"""
    host: str = Field("0.0.0.0", description="Адрес для привязки сервера")
    port: int = Field(8080, ge=1, le=65535, description="Порт сервера")
    reload: bool = Field(False, description="Auto-reload при изменении кода (для разработки)")


class DriveConfig(BaseModel):
    """Настройки системы управления движением"""
    max_speed_sp: int = Field(900, gt=0, description="Максимальная скорость колеса в нативных единицах")
    stop_wait_timeout_s: float | None = Field(
        None, gt=0.0, description="Таймаут ожидания остановки (None = ждать бесконечно)"
    )
    default_mode: ControlMode = Field(ControlMode.MANUAL, description="Режим при запуске main.py")

    # Короткие толчки с простого пульта
    nudge_move_ms: int = Field(1000, gt=0, description="Длительность толчка вперёд/назад на полной мощности")
    nudge_turn_ms: int = Field(150, gt=0, description="Длительность поворота на месте")
    nudge_turn_speed_sp: int = Field(750, gt=0, description="Скорость колёс при повороте на месте")


class AvoidanceConfig(BaseModel):
    """Настройки автономного объезда препятствий"""
    # Пороги дальномера
    stop_threshold_cm: float = Field(15.0, gt=0.0, description="Ближе этого - манёвр уклонения")
    slow_threshold_cm: float = Field(40.0, gt=0.0, description="Дальше этого - полная скорость")

    # Цикл управления
    poll_interval_s: float = Field(1.0, ge=0.0, description="Пауза между итерациями цикла")

    # Манёвр: отъезд назад
    backup_speed_sp: int = Field(500, gt=0, description="Скорость отъезда назад (нативные единицы)")
    backup_duration_ms: int = Field(1500, gt=0, description="Длительность отъезда назад")

    # Манёвр: разворот на месте
    turn_speed_sp: int = Field(750, gt=0, description="Скорость колёс при развороте")
    turn_min_ms: int = Field(250, gt=0, description="Минимальная длительность разворота")
    turn_max_ms: int = Field(750, gt=0, description="Максимальная длительность разворота")

    # Кнопки
    stop_on_any_button: bool = Field(True, description="Любая кнопка прерывает автономный режим")
    exit_button: str = Field("backspace", description="Кнопка выхода из цикла кнопок")
    rearm_delay_s: float = Field(1.0, ge=0.0, description="Пауза после остановки (защита от дребезга)")
    button_poll_s: float = Field(1.0, gt=0.0, description="Частота опроса кнопок в ожидании старта")

    @model_validator(mode="after")
    def _check_ranges(self) -> "AvoidanceConfig":
        if self.slow_threshold_cm <= self.stop_threshold_cm:
            raise ValueError("slow_threshold_cm must be greater than stop_threshold_cm")
        if self.turn_min_ms > self.turn_max_ms:
            raise ValueError("turn_min_ms must not exceed turn_max_ms")
        return self


class HardwareBackend(str, Enum):
    AUTO = "auto"
    PIGPIO = "pigpio"
    SIMULATED = "simulated"


class HardwareConfig(BaseModel):
    """Пины и параметры железа (Raspberry Pi + pigpio)"""
    backend: HardwareBackend = Field(HardwareBackend.AUTO, description="auto = pigpio если доступен")

    # H-мост (L298N): ENA/IN1/IN2 и ENB/IN3/IN4
    left_pwm_pin: int = Field(12, ge=0, description="ENA левого мотора")
    left_in1_pin: int = Field(5, ge=0)
    left_in2_pin: int = Field(6, ge=0)
    right_pwm_pin: int = Field(13, ge=0, description="ENB правого мотора")
    right_in1_pin: int = Field(20, ge=0)
    right_in2_pin: int = Field(21, ge=0)
    pwm_frequency: int = Field(1000, gt=0, description="Частота ШИМ моторов (Гц)")
    pwm_range: int = Field(255, ge=25, le=40000, description="Диапазон скважности ШИМ")
    brake_settle_s: float = Field(0.3, ge=0.0, description="Время до полной остановки после торможения")

    # Датчики
    ultrasonic_trigger_pin: int = Field(23, ge=0, description="TRIG HC-SR04")
    ultrasonic_echo_pin: int = Field(24, ge=0, description="ECHO HC-SR04")
    echo_timeout_s: float = Field(0.05, gt=0.0, description="Таймаут эха дальномера")
    touch_pin: int = Field(25, ge=0, description="Кнопка-бампер (замыкает на землю)")

    # Кнопки управления (замыкают на землю)
    button_pins: dict[str, int] = Field(
        default_factory=lambda: {"enter": 16, "backspace": 26},
        description="Имя кнопки -> GPIO пин",
    )

    # Индикация
    red_led_pin: int = Field(17, ge=0)
    green_led_pin: int = Field(27, ge=0)
    buzzer_pin: int = Field(18, ge=0, description="Пассивный зуммер")


class Config(BaseModel):
    """Главная конфигурация приложения"""
    server: ServerConfig = ServerConfig()
    drive: DriveConfig = DriveConfig()
    avoidance: AvoidanceConfig = AvoidanceConfig()
    hardware: HardwareConfig = HardwareConfig()


# Глобальный экземпляр конфигурации
config = Config()
