"""VND/USD conversion at a fixed configured rate."""


class CurrencyConverter:

    def __init__(self, rate: float = 24500):
        self.rate = float(rate)

    def vnd_to_usd(self, amount_vnd: float) -> float:
        return round(amount_vnd / self.rate, 2)

    def usd_to_vnd(self, amount_usd: float) -> float:
        return round(amount_usd * self.rate, 2)

    def format(self, amount: float, currency: str = 'VND') -> str:
        if currency == 'VND':
            # Vietnamese grouping uses dots.
            return f"{amount:,.0f}".replace(',', '.') + ' ₫'
        if currency == 'USD':
            return f"${amount:,.2f}"
        return f"{amount:,.2f} {currency}"

    def conversion_details(self, amount_vnd: float) -> dict:
        amount_usd = self.vnd_to_usd(amount_vnd)
        return {
            'amount_vnd': amount_vnd,
            'amount_usd': amount_usd,
            'exchange_rate': self.rate,
            'formatted_vnd': self.format(amount_vnd, 'VND'),
            'formatted_usd': self.format(amount_usd, 'USD'),
        }
