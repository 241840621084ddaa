from CertCheck.certcheck import main

if __name__ == "__main__":
    main()
