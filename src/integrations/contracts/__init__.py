"""
Contracts (data models).

Shapes shared by the engine, the proposal stores and the payment-link clients.
Mock and real implementations both return these objects.
"""
