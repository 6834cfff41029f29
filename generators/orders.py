import random
from .base import BaseGenerator
from .customers import CustomerGenerator
from models import CartItem, DeliveryInfo, Order, PaymentMethod, PaymentStatus, Profile
from services import OrderStore


class OrderGenerator(BaseGenerator):
    """Places random orders from existing customers through the order store."""

    SPECIAL_INSTRUCTIONS = [
        "", "", "", "",
        "Extra achar please",
        "Ring doorbell",
        "Call when arriving",
        "Buzzer code: {code}",
        "Leave with concierge",
        "Less spicy",
        "Unit {apt}",
    ]

    def __init__(self, store: OrderStore, seed: int | None = 42):
        super().__init__(seed)
        self.store = store
        self.customer_gen = CustomerGenerator(store, seed)

    def _instructions(self) -> str:
        note = random.choice(self.SPECIAL_INSTRUCTIONS)
        return note.format(code=random.randint(1000, 9999), apt=random.randint(1, 2500))

    def random_cart(self) -> list[CartItem]:
        menu = self.store.list_menu(available_only=True)
        if not menu:
            raise ValueError("No available menu items. Seed the menu first.")
        picks = random.sample(menu, k=min(len(menu), random.choices([1, 2, 3], weights=[50, 35, 15])[0]))
        return [
            CartItem(menu_item_id=m.id, qty=random.choices([1, 2, 3], weights=[60, 30, 10])[0])
            for m in picks
        ]

    def _pick_customer(self) -> Profile:
        customers = self.customer_gen.get_all()
        if not customers:
            customers = self.customer_gen.save_to_db(self.customer_gen.generate_batch(5))
        return random.choice(customers)

    def generate_one(self) -> Order:
        customer = self._pick_customer()
        if customer.lat is not None and customer.lng is not None:
            lat, lng = customer.lat, customer.lng
        else:
            lat, lng = self.random_point_near_kitchen(8.0)
        payment_method = random.choice([PaymentMethod.CASH, PaymentMethod.CARD])
        return self.store.create_order(
            customer,
            self.random_cart(),
            DeliveryInfo(
                address=customer.address or self.fake.street_address(),
                lat=round(lat, 6),
                lng=round(lng, 6),
                special_instructions=self._instructions(),
            ),
            payment_method=payment_method,
            payment_status=PaymentStatus.PAID if payment_method == PaymentMethod.CARD else PaymentStatus.PENDING,
        )

    def generate_batch(self, count: int) -> list[Order]:
        return [self.generate_one() for _ in range(count)]

    def save_to_db(self, records: list[Order]) -> list[Order]:
        """
        No-op kept for the generator interface.

        Orders are written when generate_one() places them through
        OrderStore.create_order, so there is nothing left to save here.
        """
        return records
