from missionledger.db.base import Base
from missionledger.db import registry as _  # noqa: F401  # register models
from missionledger.db.session import engine


def init():
    Base.metadata.create_all(bind=engine)
    print("Mission ledger tables created")


if __name__ == "__main__":
    init()
