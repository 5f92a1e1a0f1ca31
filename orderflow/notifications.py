"""
Who hears about a transition, and what they are told.
compose() is pure: it only looks at the post-transition order, so the dispatcher runs it in its own task
and can be tested without a bus.
"""
from pydantic import BaseModel, Field

from orderflow.config import settings
from orderflow.models import Order, Role


class NotificationBody(BaseModel):
    msg: str
    url: str | None = None


class Notification(BaseModel):
    topic: str
    body: NotificationBody
    roles: list[Role] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)


def _order_url(order: Order) -> str:
    return settings.order_url_template.format(order_id=order.id)


def _message(order: Order, user_id: str, msg: str) -> tuple[str, Notification]:
    return user_id, Notification(
        topic=settings.notification_topic,
        body=NotificationBody(msg=msg, url=_order_url(order)),
        users=[user_id],
    )


def _broadcast(order: Order, role: Role, msg: str) -> tuple[None, Notification]:
    """Addressed to everyone holding role rather than to one user."""
    return None, Notification(
        topic=settings.notification_topic,
        body=NotificationBody(msg=msg, url=_order_url(order)),
        roles=[role],
    )


def _deliverer_name(order: Order) -> str:
    d = order.deliverer
    if d is None:
        return "A deliverer"
    return f"{d.firstname} {d.lastname}".strip() or "A deliverer"


def compose(transition: str, order: Order) -> list[tuple[str | None, Notification]]:
    """Ordered (target_user_id, notification) pairs for a committed transition.

    A None target is a role broadcast: the notification's roles name who receives it.
    """
    owner = order.restaurant.owner.id
    client = order.client.id
    restaurant = order.restaurant.name

    if transition == "submit":
        return [_message(order, owner, f"New order {order.id} is waiting for validation")]
    if transition == "accept":
        return [_message(order, client, f"{restaurant} accepted your order and is preparing it")]
    if transition == "decline":
        return [_message(order, client, f"{restaurant} declined your order")]
    if transition == "ready":
        pairs = [_message(order, client, f"Your order from {restaurant} is ready and waiting for delivery")]
        if order.deliverer is not None:
            pairs.append(_message(order, order.deliverer.id, f"Order {order.id} is ready for pickup at {restaurant}"))
        else:
            pairs.append(_broadcast(order, "deliverer", f"Order {order.id} is ready for pickup at {restaurant}, waiting for a deliverer"))
        return pairs
    if transition == "assign_deliverer":
        who = _deliverer_name(order)
        return [
            _message(order, owner, f"{who} will deliver order {order.id}"),
            _message(order, client, f"{who} will deliver your order from {restaurant}"),
        ]
    if transition == "begin_delivery":
        return [_message(
            order,
            client,
            f"Your order is on its way. Give code {order.validation_code} to the deliverer on arrival",
        )]
    if transition == "complete":
        return [_message(order, client, f"Your order from {restaurant} has been delivered. Enjoy!")]
    return []
