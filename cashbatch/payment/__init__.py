"""Cash application: customer resolution, exact invoice matching and ERP export."""
