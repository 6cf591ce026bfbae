import os

basedir = os.path.abspath(os.path.dirname(__file__))


def env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'foodapp')
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL',
        'sqlite:///' + os.path.join(basedir, 'database.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # ---------------- PRICING ---------------- #
    FREE_DELIVERY_THRESHOLD = float(os.environ.get('FREE_DELIVERY_THRESHOLD', 500))
    DELIVERY_CHARGE = float(os.environ.get('DELIVERY_CHARGE', 50))
    RESTAURANT_COMMISSION = float(os.environ.get('RESTAURANT_COMMISSION', 15))

    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:5173')

    # ---------------- ESEWA ---------------- #
    ESEWA_MERCHANT_ID = os.environ.get('ESEWA_MERCHANT_ID', 'EPAYTEST')
    ESEWA_MERCHANT_SECRET = os.environ.get('ESEWA_MERCHANT_SECRET', '8gBm/:&EnhH.1/q')
    ESEWA_PAYMENT_URL = os.environ.get(
        'ESEWA_PAYMENT_URL',
        'https://rc-epay.esewa.com.np/api/epay/main/v2/form'
    )
    ESEWA_SUCCESS_URL = os.environ.get(
        'ESEWA_SUCCESS_URL',
        'http://localhost:5000/api/payments/esewa/success'
    )
    ESEWA_FAILURE_URL = os.environ.get(
        'ESEWA_FAILURE_URL',
        'http://localhost:5000/api/payments/esewa/failure'
    )
    ESEWA_VERIFY_CALLBACK = env_flag('ESEWA_VERIFY_CALLBACK', True)

    # ---------------- KHALTI ---------------- #
    KHALTI_PUBLIC_KEY = os.environ.get('KHALTI_PUBLIC_KEY', 'fb16f042f5614366804effb4879e1c80')
    KHALTI_SECRET_KEY = os.environ.get('KHALTI_SECRET_KEY', 'f6392a0b6c2b43ff977c62d06e832350')
    KHALTI_API_URL = os.environ.get('KHALTI_API_URL', 'https://a.khalti.com/api/v2')
    KHALTI_TIMEOUT = float(os.environ.get('KHALTI_TIMEOUT', 10))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    FREE_DELIVERY_THRESHOLD = 500.0
    DELIVERY_CHARGE = 50.0
