import os


def main():
    import uvicorn

    port = int(os.environ.get("PORT", "8000"))
    print(f"Serving Kitchn on :{port}")
    uvicorn.run("kitchn.app:app", host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
