"""
Order processing example demonstrating a business workflow with ModuLink.
"""

import asyncio
import random

from modulink import (
    chain, create_http_context, error_handler, parallel, performance_tracker, retry,
    validate, Link, Middleware,
)


# Links
def check_order(ctx):
    order = ctx.get('order')

    if not order:
        return 'Order is missing'
    if not order.get('items'):
        return 'Order has no items'
    if not order.get('customer_id'):
        return 'Customer ID is missing'
    return True


def accept_order(ctx):
    print(f"✓ Order validated for customer {ctx['order']['customer_id']}")
    return ctx


class CalculateTotals(Link):
    def __init__(self, tax_rate=0.08):
        self.tax_rate = tax_rate

    def execute(self, ctx):
        items = ctx['order']['items']

        subtotal = sum(item['price'] * item['quantity'] for item in items)
        tax = subtotal * self.tax_rate
        total = subtotal + tax

        print(f"✓ Calculated totals - Subtotal: ${subtotal:.2f}, Tax: ${tax:.2f}, Total: ${total:.2f}")
        return ctx.merge(subtotal=subtotal, tax=tax, total=total)


async def check_inventory(ctx):
    for item in ctx['order']['items']:
        await asyncio.sleep(0.01)
        print(f"  Checked inventory for {item['name']}")
    return {**ctx, 'inventory_available': True}


async def check_fraud(ctx):
    await asyncio.sleep(0.02)
    print("  Fraud check passed")
    return {**ctx, 'fraud_score': 0.02}


class ProcessPayment(Link):
    """Payment gateway that times out now and then."""

    def __init__(self, failure_rate=0.3):
        self.failure_rate = failure_rate

    async def execute(self, ctx):
        await asyncio.sleep(0.01)
        if random.random() < self.failure_rate:
            raise TimeoutError("Payment gateway timed out")

        payment_id = f"PAY-{hash(str(ctx['total'])) % 100000:05d}"
        print(f"✓ Payment processed: {payment_id} (${ctx['total']:.2f})")
        return ctx.merge(payment_id=payment_id, payment_status='completed')


def create_shipment(ctx):
    order = ctx['order']
    shipment_id = f"SHIP-{hash(str(order['customer_id'])) % 100000:05d}"
    tracking_number = f"TRACK-{shipment_id[-5:]}-{hash(order['id']) % 10000:04d}"

    print(f"✓ Shipment created: {shipment_id} (Tracking: {tracking_number})")
    return {**ctx, 'shipment_id': shipment_id, 'tracking_number': tracking_number}


# Middleware
class OrderLoggingMiddleware(Middleware):
    def execute(self, ctx):
        current = ctx.get('_current_link', {})
        order_id = (ctx.get('body') or {}).get('id', 'N/A')
        print(f"\n[{order_id}] → {current.get('name', 'Unknown')}")
        return ctx


def report_failure(error, ctx):
    print(f"✗ {error}")
    return {**ctx, 'status': 500}


def create_sample_order(order_id, customer_id):
    return {
        'id': order_id,
        'customer_id': customer_id,
        'items': [
            {'name': 'Widget', 'price': 19.99, 'quantity': 2},
            {'name': 'Gadget', 'price': 49.99, 'quantity': 1},
            {'name': 'Doohickey', 'price': 9.99, 'quantity': 3},
        ],
    }


async def main():
    print("=" * 60)
    print("ModuLink Order Processing Example")
    print("=" * 60)

    tracker = performance_tracker()

    order_chain = (chain(
        lambda ctx: {**ctx, 'order': ctx['body']},
        validate(check_order, accept_order),
        CalculateTotals(),
        parallel(check_inventory, check_fraud),
        retry(ProcessPayment(), max_retries=3, delay_ms=50),
        create_shipment,
        name='orders',
    )
        .on_input(OrderLoggingMiddleware())
        .on_output(tracker)
        .use(error_handler(report_failure)))

    print(f"\nChain: {order_chain}\n")

    requests = [
        create_http_context(method='POST', url='/orders', body=create_sample_order('ORD-001', 'CUST-123')),
        create_http_context(method='POST', url='/orders', body=create_sample_order('ORD-002', 'CUST-456')),
        create_http_context(method='POST', url='/orders', body={'id': 'ORD-003', 'items': []}),
    ]

    successful = 0
    failed = 0

    for request in requests:
        result = await order_chain(request)

        if result.failed:
            failed += 1
            print(f"\n✗ Order {request['body']['id']} failed: {result.error.message}")
        else:
            successful += 1
            attempts = result['retry_info']['attempts']
            print(f"\n✓ Order {request['body']['id']} processed (payment attempts: {attempts})")

    tracker.print_report()

    print("\n" + "=" * 60)
    print(f"Summary: {successful} successful, {failed} failed")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
