from datetime import time

from sqlalchemy.orm import Session

from .database import SessionLocal, engine, init_db
from .models import (
    Client,
    CombinedTable,
    CombinedTableMember,
    Element,
    ElementPurpose,
    Floorplan,
    FloorplanElementInstance,
    Restaurant,
    Shift,
    TableType,
)


def seed_demo_data(db: Session) -> dict:
    """Create one restaurant with shifts, a floorplan, tables and a combination"""
    restaurant = Restaurant(name="Tarabezah")
    db.add(restaurant)
    db.flush()

    # Declaration order matters for walk-in shift selection
    shifts = {
        "Breakfast": Shift(restaurant_id=restaurant.id, name="Breakfast", start_time=time(8, 0), end_time=time(11, 0)),
        "Lunch": Shift(restaurant_id=restaurant.id, name="Lunch", start_time=time(12, 0), end_time=time(16, 0)),
        "Dinner": Shift(restaurant_id=restaurant.id, name="Dinner", start_time=time(17, 0), end_time=time(23, 0)),
    }
    for shift in shifts.values():
        db.add(shift)

    round_table = Element(name="Round Table", table_type=TableType.ROUND, purpose=ElementPurpose.RESERVABLE)
    square_table = Element(name="Square Table", table_type=TableType.SQUARE, purpose=ElementPurpose.RESERVABLE)
    booth = Element(name="Booth", table_type=TableType.BOOTH, purpose=ElementPurpose.RESERVABLE)
    planter = Element(name="Planter", table_type=TableType.OTHER, purpose=ElementPurpose.DECORATIVE)
    db.add_all([round_table, square_table, booth, planter])

    floorplan = Floorplan(restaurant_id=restaurant.id, name="Main Hall")
    db.add(floorplan)
    db.flush()

    tables = {
        "T1": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=square_table.id,
                                       table_id="T1", min_capacity=2, max_capacity=4),
        "T2": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=square_table.id,
                                       table_id="T2", min_capacity=2, max_capacity=4),
        "T3": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=round_table.id,
                                       table_id="T3", min_capacity=1, max_capacity=2),
        "T4": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=round_table.id,
                                       table_id="T4", min_capacity=4, max_capacity=6),
        "T5": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=booth.id,
                                       table_id="T5", min_capacity=6, max_capacity=10),
        "T6": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=square_table.id,
                                       table_id="T6", min_capacity=2, max_capacity=4),
        "P1": FloorplanElementInstance(floorplan_id=floorplan.id, element_id=planter.id,
                                       table_id="P1", min_capacity=0, max_capacity=0),
    }
    db.add_all(tables.values())
    db.flush()

    combined = CombinedTable(
        floorplan_id=floorplan.id,
        group_name="C1",
        min_capacity=4,
        max_capacity=8,
        members=[
            CombinedTableMember(floorplan_element_instance_id=tables["T1"].id),
            CombinedTableMember(floorplan_element_instance_id=tables["T2"].id),
        ],
    )
    db.add(combined)

    clients = [
        Client(name="Lina Haddad", phone_number="+962790000001", email="lina@example.com"),
        Client(name="Omar Khalil", phone_number="+962790000002", email="omar@example.com"),
    ]
    db.add_all(clients)
    db.commit()

    return {
        "restaurant": restaurant,
        "shifts": shifts,
        "floorplan": floorplan,
        "tables": tables,
        "combined": combined,
        "clients": clients,
    }


def init_database():
    """Create the schema and seed demo data into an empty database"""
    init_db(engine)

    db = SessionLocal()
    try:
        if db.query(Restaurant).first():
            print("Database already initialized. Skipping...")
            return

        data = seed_demo_data(db)
        print("Database initialized successfully!")
        print(f"   - Created restaurant {data['restaurant'].name} with {len(data['shifts'])} shifts")
        print(f"   - Created {len(data['tables'])} floorplan elements")
        print(f"   - Created combined table {data['combined'].label}")
    except Exception as e:
        print(f"Error initializing database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
