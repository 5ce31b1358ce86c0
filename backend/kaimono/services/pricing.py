"""
Pure pricing rules for checkout: consumption tax and domestic shipping.

All amounts are whole yen.
"""
from dataclasses import asdict, dataclass
from decimal import ROUND_FLOOR, Decimal

FREE_SHIPPING_THRESHOLD = 5000
DEFAULT_SHIPPING_FEE = 500
TAX_RATE = 0.10

_REGION_FEES = [
    (
        800,
        # Hokkaido, Okinawa, Kyushu
        ["北海道", "沖縄県", "福岡県", "佐賀県", "長崎県", "熊本県", "大分県", "宮崎県", "鹿児島県"],
    ),
    (
        700,
        # Tohoku, Chugoku, Shikoku
        [
            "青森県", "岩手県", "宮城県", "秋田県", "山形県", "福島県",
            "鳥取県", "島根県", "岡山県", "広島県", "山口県",
            "徳島県", "香川県", "愛媛県", "高知県",
        ],
    ),
    (
        500,
        # Kanto + Yamanashi
        ["茨城県", "栃木県", "群馬県", "埼玉県", "千葉県", "東京都", "神奈川県", "山梨県"],
    ),
    (
        600,
        # Chubu, Kansai
        [
            "新潟県", "富山県", "石川県", "福井県", "長野県", "岐阜県", "静岡県", "愛知県",
            "三重県", "滋賀県", "京都府", "大阪府", "兵庫県", "奈良県", "和歌山県",
        ],
    ),
]

SHIPPING_FEES = {pref: fee for fee, prefs in _REGION_FEES for pref in prefs}


def calculate_shipping_cost(
    prefecture: str,
    subtotal: int,
    threshold: int = FREE_SHIPPING_THRESHOLD,
    default_fee: int = DEFAULT_SHIPPING_FEE,
) -> int:
    if subtotal >= threshold:
        return 0
    return SHIPPING_FEES.get((prefecture or "").strip(), default_fee)


def calculate_tax(taxable: int, rate: float = TAX_RATE) -> int:
    # Decimal(str()) so 0.1 stays exact: floor(2000 * 0.1) must be 200, not 199
    amount = Decimal(max(0, int(taxable))) * Decimal(str(rate))
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class CheckoutTotals:
    subtotal: int
    discount: int
    tax: int
    shipping: int
    total: int

    def to_dict(self):
        return asdict(self)


def summarize(subtotal: int, discount: int, shipping: int, rate: float = TAX_RATE) -> CheckoutTotals:
    discount = min(max(0, int(discount)), int(subtotal))
    tax = calculate_tax(subtotal - discount, rate)
    total = subtotal - discount + tax + shipping
    return CheckoutTotals(subtotal=subtotal, discount=discount, tax=tax, shipping=shipping, total=total)
