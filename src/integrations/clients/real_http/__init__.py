"""
Real HTTP integration clients.

These clients communicate with real external systems via HTTP:
- The browser-automation worker that produces cashier payment links

Important:
- Must implement the same interfaces as the mock clients
- Must return data shaped according to src/integrations/contracts/*

Switching:
The selection of mock vs real clients happens in src/api/main.py only.
"""
