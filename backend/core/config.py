import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Unit the explicit cost_per_unit override is quoted in when the ingredient doesn't say
    default_cost_unit: str = os.getenv("COSTING_DEFAULT_COST_UNIT", "oz")
    # How a bare "oz" is read: fluid | weight | auto (weight for solids by category)
    oz_interpretation: str = os.getenv("COSTING_OZ_INTERPRETATION", "fluid").strip().lower()
    epsilon: float = float(os.getenv("COSTING_EPSILON", "1e-6"))
    log_level: str = os.getenv("COSTING_LOG_LEVEL", "WARNING").upper()

    # Batch prep defaults
    default_container: str = os.getenv("BATCH_DEFAULT_CONTAINER", "750ml Bottle")
    default_dilution_percentage: float = float(os.getenv("BATCH_DEFAULT_DILUTION_PERCENTAGE", "25"))


settings = Settings()
