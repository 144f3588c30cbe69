from robodrive.config import HardwareBackend, config

# Тесты никогда не ходят в pigpiod: веб-сервер при импорте создаёт симулятор
config.hardware.backend = HardwareBackend.SIMULATED
