"""
Seed script to populate the component catalog for development.
Inserts sample Figma components with synthetic usage counts.
"""
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add backend directory to path to import figbud modules
backend_path = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from figbud.core.database import get_supabase_client
from figbud.services.integrations.catalog import COMPONENTS_TABLE

# (name, type, category, description, figma_properties)
COMPONENTS = [
    ("Primary Button", "button", "form", "A primary action button",
     {"width": 120, "height": 40, "cornerRadius": 8, "fill": "#0D99FF"}),
    ("Secondary Button", "button", "form", "Outlined button for secondary actions",
     {"width": 120, "height": 40, "cornerRadius": 8, "stroke": "#0D99FF"}),
    ("Icon Button", "button", "form", "Square button holding a single icon",
     {"width": 40, "height": 40, "cornerRadius": 20}),
    ("Text Input", "input", "form", "Basic text input field",
     {"width": 280, "height": 40, "cornerRadius": 6, "placeholder": "Enter text"}),
    ("Search Input", "input", "form", "Input with a leading search icon",
     {"width": 320, "height": 40, "cornerRadius": 20}),
    ("Card Component", "card", "layout", "A container card with shadow",
     {"width": 320, "height": 200, "cornerRadius": 12, "shadow": "0 2 8 rgba(0,0,0,0.1)"}),
    ("Product Card", "card", "layout", "Card with image, title and price",
     {"width": 280, "height": 360, "cornerRadius": 12}),
    ("Top Navigation", "navbar", "navigation", "Horizontal navigation bar with logo and links",
     {"width": 1440, "height": 64}),
    ("Toggle Switch", "toggle", "form", "On/off switch with label",
     {"width": 44, "height": 24, "cornerRadius": 12}),
    ("Select Dropdown", "dropdown", "form", "Single-select dropdown menu",
     {"width": 240, "height": 40, "cornerRadius": 6}),
    ("Confirm Modal", "modal", "overlay", "Dialog with title, body and two actions",
     {"width": 480, "height": 240, "cornerRadius": 16}),
    ("Data Table", "table", "data", "Table with header row and zebra stripes",
     {"width": 960, "rowHeight": 48}),
    ("Login Form", "form", "form", "Email, password and submit button",
     {"width": 360, "spacing": 16}),
    ("Status Badge", "badge", "feedback", "Small pill showing a status",
     {"height": 20, "cornerRadius": 10}),
    ("Description Textarea", "textarea", "form", "Multiline text input",
     {"width": 320, "height": 120, "cornerRadius": 6}),
    ("Radio Group", "radio", "form", "Vertical group of radio options",
     {"spacing": 12}),
    ("User Avatar", "avatar", "media", "Circular profile picture",
     {"width": 40, "height": 40, "cornerRadius": 20}),
    ("Info Tooltip", "tooltip", "overlay", "Dark tooltip with an arrow",
     {"maxWidth": 240, "cornerRadius": 4}),
]


def generate_components(client):
    """Insert the sample components."""
    rows = []
    for name, component_type, category, description, properties in COMPONENTS:
        days_ago = random.randint(0, 180)
        created_at = (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()
        rows.append(
            {
                "name": name,
                "type": component_type,
                "category": category,
                "description": description,
                "figma_properties": properties,
                "usage_count": random.randint(0, 250),
                "created_at": created_at,
            }
        )

    try:
        client.table(COMPONENTS_TABLE).insert(rows).execute()
        print(f"[OK] Inserted {len(rows)} components")
        return len(rows)
    except Exception as e:
        print(f"[ERROR] Error inserting components: {e}")
        return 0


def main():
    """Main function to seed the catalog."""
    print("Starting component catalog seeding...")
    print("-" * 50)

    client = get_supabase_client()
    if not client:
        print("[ERROR] Failed to connect to Supabase. Check your .env file.")
        sys.exit(1)

    try:
        client.table(COMPONENTS_TABLE).select("id").limit(1).execute()
    except Exception as e:
        print(f"[ERROR] Table {COMPONENTS_TABLE} may not exist. Run migrations first.")
        print(f"  Error: {e}")
        sys.exit(1)

    print("\nGenerating components...")
    inserted = generate_components(client)

    print("\n" + "-" * 50)
    if not inserted:
        sys.exit(1)
    print("[OK] Catalog seeding completed successfully!")
    print(f"  - Components: {inserted}")
    print(f"  - Types: {len({c[1] for c in COMPONENTS})}")


if __name__ == "__main__":
    main()
