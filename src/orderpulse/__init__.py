"""orderpulse — real-time order status notifications for the storefront.

The client side keeps one websocket per signed-in session, a capped
notification feed, and an authoritative set of the customer's orders that
real-time deltas are reconciled into. The server side publishes order
events to Redis and relays them to connected customers.
"""

__version__ = "0.1.0"
