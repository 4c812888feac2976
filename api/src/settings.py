from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_api_')

    currency: str = Field(default='COP')

    # Синхронная часть обработки веб-хука, по истечении отдаем 503 и ждем повтора от шлюза
    webhook_timeout: float = Field(default=10.0)
    notification_timeout: float = Field(default=5.0)

    free_shipping_threshold: Decimal = Field(default=Decimal('100000'))
    flat_shipping_cost: Decimal = Field(default=Decimal('15000'))
    tax_rate: Decimal = Field(default=Decimal('0.19'))

    pending_payments_polling_interval: float = Field(default=30.0)
    pending_payment_min_age: float = Field(default=60.0)
    pending_payments_polling_concurrency: int = Field(default=4)


class PostgresSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_postgres_')

    host: str = Field(default='127.0.0.1')
    port: int = Field(default=5432)
    user: str = Field(default='neosale')
    password: str = Field(default='neosale')
    db: str = Field(default='neosale')

    def get_url(self, driver: str | None, db: str | None = None):
        scheme = f'postgresql{f"+{driver}" if driver else ""}'
        return f'{scheme}://{self.user}:{self.password}@{self.host}:{self.port}/{db or self.db}'


class KafkaSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_kafka_')

    # Если не задан, события о заказах не публикуются
    bootstrap_servers: str | None = Field(default=None)
    orders_topic: str = Field(default='order')


class WompiSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_wompi_')

    base_url: str = Field(default='https://sandbox.wompi.co')
    events_secret: str = Field(default='')
    connection_timeout_sec: float = 30.0


class MercadoPagoSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_mercadopago_')

    base_url: str = Field(default='https://api.mercadopago.com')
    access_token: str = Field(default='')
    webhook_secret: str = Field(default='')
    connection_timeout_sec: float = 30.0


class MailgunSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='neosale_mailgun_')

    base_url: str = Field(default='https://api.mailgun.net')
    domain: str = Field(default='mg.neosale.co')
    # Если не задан, письма с подтверждением не отправляются
    api_key: str | None = Field(default=None)
    sender: str = Field(default='NeoSale <pedidos@neosale.co>')


settings = Settings()
pg_settings = PostgresSettings()
kafka_settings = KafkaSettings()
wompi_settings = WompiSettings()
mercadopago_settings = MercadoPagoSettings()
mailgun_settings = MailgunSettings()
