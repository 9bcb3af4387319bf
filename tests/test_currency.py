from autorental.currency import CurrencyConverter


def test_conversion_uses_configured_rate():
    converter = CurrencyConverter(25000)
    assert converter.vnd_to_usd(1980000) == 79.2
    assert converter.usd_to_vnd(79.2) == 1980000


def test_formats():
    converter = CurrencyConverter()
    assert converter.format(1234567) == '1.234.567 ₫'
    assert converter.format(1234.567, 'USD') == '$1,234.57'
    assert converter.format(1234.567, 'EUR') == '1,234.57 EUR'


def test_conversion_details():
    details = CurrencyConverter(24500).conversion_details(2450000)
    assert details['amount_usd'] == 100.0
    assert details['exchange_rate'] == 24500.0
    assert details['formatted_vnd'] == '2.450.000 ₫'
    assert details['formatted_usd'] == '$100.00'
