"""Authentication for the websocket relay.

Learn: the storefront issues customer JWTs; the relay never logs anyone in.
It only verifies the token a client presents on /ws and reads the customer
id from it.
"""
