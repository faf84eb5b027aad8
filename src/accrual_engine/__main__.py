from accrual_engine.engine import run

if __name__ == "__main__":
    run()
