"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external service.
They are used when:
- The payment-link worker is not deployed or its URL is not configured
- We want to run the accept -> pay -> issue flow end-to-end in tests

Important:
- Mock clients must follow the SAME interface as real HTTP clients.
- Mock clients should return data shaped according to src/integrations/contracts/*

Switching to real:
Set PAYMENT_LINK_API_URL (or INTEGRATIONS_MODE=real) and src/api/main.py
wires clients/real_http/* instead.
"""
