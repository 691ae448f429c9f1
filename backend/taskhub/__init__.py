"""TaskHub realtime messaging backend.

Direct and group chat for the TaskHub task/report tool: REST endpoints for
durable message operations, a WebSocket channel for live pushes, and a client
package that reconciles both into one consistent conversation view.
"""
