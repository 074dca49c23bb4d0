# healthnet/routers/dependencies.py
from healthnet.repositories.cart_repo import CartRepository
from healthnet.repositories.delivery_repo import DeliveryRepository
from healthnet.repositories.drug_repo import DrugRepository
from healthnet.repositories.order_repo import OrderRepository
from healthnet.repositories.payment_repo import PaymentRepository
from healthnet.repositories.stats_repo import StatsRepository
from healthnet.services.cart_service import CartService
from healthnet.services.delivery_service import DeliveryService
from healthnet.services.inventory_service import InventoryService
from healthnet.services.order_service import OrderService
from healthnet.services.payment_service import PaymentService

# Shared, stateless service graph used by every router.
cart_repo = CartRepository()
delivery_repo = DeliveryRepository()
drug_repo = DrugRepository()
order_repo = OrderRepository()
payment_repo = PaymentRepository()
stats_repo = StatsRepository()

inventory_service = InventoryService(drug_repo, stats_repo)
cart_service = CartService(cart_repo, drug_repo)
delivery_service = DeliveryService(delivery_repo, order_repo, stats_repo)
order_service = OrderService(
    order_repo,
    cart_repo,
    stats_repo,
    inventory_service,
    cart_service,
    delivery_service,
)
payment_service = PaymentService(payment_repo, order_repo)
