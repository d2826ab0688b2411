"""
Mermaid ER diagram fixtures for the test suite.

Each constant is a complete diagram; the comment above it names what it
exercises.
"""

# Two entities, one one-to-many relationship, conventional foreign key
SIMPLE_ERD = """erDiagram
    Customer {
        string id PK
        string name
    }
    Order {
        string id PK
        string customer_id FK
    }
    Customer ||--o{ Order : places
"""

# Same model written with inline blocks on few lines
COMPACT_ERD = "Customer{string id PK\n string name} Order{string id PK\n string customer_id FK} Customer||--o{Order:places"

# Every supported scalar type plus descriptions and constraints
TYPED_ERD = """erDiagram
    %% every scalar type
    Product {
        string product_code PK "Stock keeping unit"
        string title NOT NULL
        int quantity
        decimal price
        double weight
        boolean is_active
        datetime launched_on
        guid external_id UK
        string email
    }
"""

# Choice column, 'name' collision and a status column
EVENT_ERD = """erDiagram
    Event {
        string id PK
        string name
        choice priority
    }
"""

STATUS_ERD = """erDiagram
    Ticket {
        string id PK
        string title
        string status
        string statuscode
    }
"""

# Structural errors that auto-fix resolves
BROKEN_ERD = """erDiagram
    Invoice {
        string number
        decimal total
    }
    Shipment {
        string id PK
        string tracking PK
        string carrier
        string carrier
    }
    Invoice ||--o{ Shipment : ships
"""

# Many-to-many that needs a junction entity
MANY_TO_MANY_ERD = """erDiagram
    Student {
        string id PK
        string full_name
    }
    Course {
        string id PK
        string title
    }
    Student }o--o{ Course : enrolls
"""

# Relationship to an entity that is never declared
MISSING_ENTITY_ERD = """erDiagram
    Order {
        string id PK
        string warehouse_id FK
    }
    Warehouse ||--o{ Order : stocks
"""

# Explicit lookups, one to a foreign-prefix table
LOOKUP_ERD = """erDiagram
    Project {
        string id PK
        string title
    }
    Task {
        string id PK
        string title
        lookup(Project) project
        lookup(msdyn:Resource) owner_resource
    }
"""

# Entities that are standard tables
CDM_ERD = """erDiagram
    Account {
        string accountid PK
        string accountnumber
        string telephone1
    }
    Contact {
        string contactid PK
        string firstname
        string lastname
        string emailaddress1
    }
    Project {
        string id PK
        string title
        string account_id FK
    }
    Account ||--o{ Contact : employs
    Account ||--o{ Project : sponsors
"""

# Unparseable lines mixed with valid ones
NOISY_ERD = """erDiagram
    Note {
        string id PK
        !!! not an attribute
        string body
    }
    Note ~~ Note : weird
    Note |o--o| Note : unsupported
    random garbage
"""

# Same pair of entities related three times, once from the other side
DUPLICATE_RELATIONSHIP_ERD = """erDiagram
    Customer {
        string id PK
        string full_name
    }
    Order {
        string id PK
        string customer_id FK
    }
    Customer ||--o{ Order : places
    Customer ||--o{ Order : places
    Order }o--|| Customer : "belongs to"
"""
