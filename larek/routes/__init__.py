from larek.routes.auth import register_auth_routes
from larek.routes.customers import register_customer_routes
from larek.routes.orders import register_order_routes
from larek.routes.products import register_product_routes
from larek.routes.uploads import register_upload_routes


def register_routes(app, db, authenticator, query_builder, upload_manager):
    register_auth_routes(app, db, authenticator)
    register_customer_routes(app, db, authenticator, query_builder)
    register_order_routes(app, db, authenticator, query_builder)
    register_product_routes(app, db, authenticator, query_builder, upload_manager)
    register_upload_routes(app, authenticator, upload_manager)
