from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Models are registered through eventhub.db.models; import that package
# before create_all() or autogenerate.
