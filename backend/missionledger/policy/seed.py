from sqlalchemy.orm import Session

from missionledger.policy.models import PolicyRecord

# ---- DEFINE POLICIES HERE ----
POLICIES = [
    {
        "key": "MISSION_LIMITS",
        "version": 1,
        "payload": {
            "timeout_ms_by_mission_type": {
                "TRAFFIC": 10 * 60 * 1000,
                "SAVE": 15 * 60 * 1000,
                "SHARE": 8 * 60 * 1000,
            }
        },
    },
    {
        "key": "PAYOUT",
        "version": 1,
        "payload": {"min_payout_amount": 1000},
    },
]


def seed(db: Session) -> int:
    added = 0
    for pol in POLICIES:
        exists = (
            db.query(PolicyRecord)
            .filter(PolicyRecord.key == pol["key"])
            .filter(PolicyRecord.version == pol["version"])
            .first()
        )

        if exists:
            print(f"[SKIP] {pol['key']} v{pol['version']} already exists")
            continue

        db.add(
            PolicyRecord(
                key=pol["key"],
                version=pol["version"],
                is_active=True,
                payload_json=pol["payload"],
            )
        )
        added += 1
        print(f"[ADD] {pol['key']} v{pol['version']}")

    db.commit()
    return added


def main():
    from missionledger.db.session import SessionLocal

    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
