"""
Gateway Channels

External surfaces of the gateway:
- whatsapp: protocol socket (Node.js bridge client), credentials, QR
- http_server: FastAPI control surface (GatewayHTTPServer)
- console: interactive terminal REPL (GatewayConsole)
"""
