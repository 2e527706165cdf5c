"""
Order flow services.

    - pricing: order and line totals, discounts
    - cart: product customization and cart lines
    - catalog: cached menu provider
    - store: durable order persistence with conditional updates
    - orders: order intake and code generation
    - lifecycle: the status state machine and its gates
    - queue: kitchen display projection
    - tracking: customer-facing progress view
    - cash_session: register open / close reconciliation
    - billing: payment provider and payment-status reconciliation
    - notifications: "an order changed" channel
"""
