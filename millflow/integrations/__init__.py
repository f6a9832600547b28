"""millflow.integrations — collaborators the engine talks to.

store_gateway.SqlAlchemyStore          tenant-bound persistence, chunked batches
attendance_gateway.HttpAttendanceGateway  worker availability over HTTP (requests)

Services receive these as constructor arguments; nothing in services or
blueprints opens a session or an HTTP connection on its own.
"""
