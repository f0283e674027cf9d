import pandas as pd
import numpy as np
from datetime import datetime, timezone

def generate_mock_destinations(num_destinations=60, num_clusters=6, output_file="destinations_generated.csv", seed=None):
    """
    Generates a realistic set of destinations (e.g. parking bays) around a city centre.
    Destinations are grouped into a few clusters so some sit inside the straight-line
    threshold of the origin and most need a real route.
    """
    rng = np.random.default_rng(seed)

    # Center around Melbourne CBD (same pair the connectivity check uses)
    CENTER_LAT = -37.8136
    CENTER_LON = 144.9631

    # 1. Generate cluster centres within ~5km (roughly 0.05 degrees)
    centres = []
    for cluster_index in range(num_clusters):
        centres.append({
            "zone": f"Zone {cluster_index + 1}",
            "lat": CENTER_LAT + rng.uniform(-0.05, 0.05),
            "lon": CENTER_LON + rng.uniform(-0.05, 0.05),
        })

    data = []
    now = datetime.now(timezone.utc).isoformat()

    # 2. Generate destinations within ~1km of their cluster centre
    for destination_index in range(num_destinations):
        centre = centres[rng.integers(0, num_clusters)]
        data.append({
            "destination_id": f"d_{str(destination_index + 1).zfill(5)}",
            "zone": centre["zone"],
            "lat": np.round(centre["lat"] + rng.uniform(-0.01, 0.01), 6),
            "lon": np.round(centre["lon"] + rng.uniform(-0.01, 0.01), 6),
            "profile": rng.choice(["driving", "walking", "cycling"], p=[0.7, 0.2, 0.1]),
            "generated_at": now,
        })

    # 3. Save to CSV
    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {num_destinations} destinations and saved to '{output_file}'")

    print("\nDestinations per zone:")
    counts = df["zone"].value_counts()
    for name, count in counts.items():
        print(f"  {name}: {count}")

    return df

if __name__ == "__main__":
    generate_mock_destinations(num_destinations=60, num_clusters=6)
